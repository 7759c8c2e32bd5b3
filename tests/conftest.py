"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set DATABASE_URL for tests BEFORE importing localvault.db
# This prevents the module from trying to create ./data
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOCALVAULT_GOOGLE_CLIENT_ID", "test-client-id")

from fakes import FakeCryptoProvider, FakeGoogle  # noqa: E402
from localvault.categories import CATEGORY_SCOPES, scopes_for  # noqa: E402
from localvault.db import init_db, make_engine, make_session_factory  # noqa: E402
from localvault.models import *  # noqa: E402,F401,F403 - register all models
from localvault.services.ephemeral_store import DatabaseEphemeralStore  # noqa: E402
from localvault.services.event_bus import EventBus  # noqa: E402
from localvault.services.importers.base import ImporterConfig  # noqa: E402
from localvault.services.key_manager import MIN_PASSWORD_ITERATIONS, TOKENS_LABEL, KeyHierarchyManager  # noqa: E402
from localvault.services.oauth_client import (  # noqa: E402
    DelegatedAuthorizationClient,
    OAuthProviderConfig,
)
from localvault.services.token_vault import TokenVault  # noqa: E402
from localvault.services.vault_service import VaultService  # noqa: E402

REDIRECT_URI = "http://localhost:8788/oauth/google/callback"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    # In-memory SQLite on one shared connection, tables and pragmas applied
    engine = make_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    """Session factory bound to the test engine (services open their own sessions)."""
    return make_session_factory(db_engine)


@pytest.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session with automatic rollback."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def crypto():
    return FakeCryptoProvider()


@pytest.fixture
def key_manager(crypto):
    """Key manager with the minimum PBKDF2 iterations to keep tests fast."""
    return KeyHierarchyManager(crypto, password_iterations=MIN_PASSWORD_ITERATIONS)


@pytest.fixture
def master_key(key_manager):
    return key_manager.generate_master_key()


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest.fixture
async def http_client(fake_google):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler)) as client:
        yield client


@pytest.fixture
def oauth_config():
    return OAuthProviderConfig(client_id="test-client-id", client_secret="test-client-secret")


@pytest.fixture
def ephemeral_store(session_factory):
    return DatabaseEphemeralStore(session_factory)


@pytest.fixture
def clock():
    """Mutable fake clock in epoch milliseconds: clock.now = ..."""

    class Clock:
        now = 1_700_000_000_000

        def __call__(self) -> int:
            return self.now

    return Clock()


@pytest.fixture
def token_vault(session_factory, clock):
    return TokenVault(session_factory, expiry_buffer_seconds=300, clock=clock)


@pytest.fixture
def auth_client(oauth_config, http_client, ephemeral_store, token_vault, key_manager):
    return DelegatedAuthorizationClient(
        config=oauth_config,
        http_client=http_client,
        ephemeral_store=ephemeral_store,
        token_vault=token_vault,
        key_manager=key_manager,
        redirect_uri=REDIRECT_URI,
    )


@pytest.fixture
async def authenticated(token_vault, key_manager, master_key):
    """Store a valid token pair (access-1 / refresh-1) with every category scope."""
    token_key = key_manager.derive_service_key(master_key, TOKENS_LABEL)
    record = token_vault.seal(
        {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": " ".join(scopes_for(list(CATEGORY_SCOPES))),
        },
        token_key,
    )
    await token_vault.put(record)
    return record


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def importer_config():
    """No backoff or per-item delay in tests."""
    return ImporterConfig(backoff_base=0.0, backoff_max=0.0, item_delay=0.0)


@pytest.fixture
def make_importer(master_key, key_manager, auth_client, http_client, session_factory, importer_config, events):
    """Factory: make_importer(GmailImporter, batch_size=10)."""

    def _make(importer_cls, **config_overrides):
        config = ImporterConfig(**{**importer_config.__dict__, **config_overrides})
        return importer_cls(
            master_key=master_key,
            key_manager=key_manager,
            auth_client=auth_client,
            http_client=http_client,
            session_factory=session_factory,
            config=config,
            events=events,
        )

    return _make


@pytest.fixture
async def vault(session_factory, http_client, crypto, oauth_config, events, importer_config):
    """VaultService wired to the fake provider, fast KDF and no import delays."""
    service = VaultService(
        session_factory,
        http_client=http_client,
        crypto=crypto,
        oauth_config=oauth_config,
        events=events,
        importer_config=importer_config,
        password_iterations=MIN_PASSWORD_ITERATIONS,
    )
    yield service
    await service.aclose()


# ============================================================================
# API
# ============================================================================


@pytest.fixture
async def app():
    """Create FastAPI app for testing."""
    from localvault.main import app as application
    return application


@pytest.fixture
async def client(app, vault, db):
    """Create async test client backed by the test vault and database."""
    from httpx import ASGITransport, AsyncClient
    from localvault.db import get_db
    from localvault.dependencies import get_vault_service

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vault_service] = lambda: vault

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
