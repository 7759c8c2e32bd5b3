"""Engine, session factory and declarative base for the vault database."""

import logging
import os
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/localvault.db"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

# Applied to every new SQLite connection; foreign_keys makes chunk rows
# cascade with their document
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA foreign_keys=ON",
)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _apply_sqlite_pragmas(dbapi_conn, _connection_record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def make_engine(url: str) -> AsyncEngine:
    """Create the async engine for a database URL.

    In-memory SQLite lives on one shared connection. File-backed SQLite
    gets its parent directory created and a regular pool, so every session
    holds its own connection and transaction; WAL and busy_timeout let
    them run side by side.
    """
    if not _is_sqlite(url):
        return create_async_engine(url, pool_size=10, max_overflow=20, pool_pre_ping=True)

    if ":memory:" in url:
        engine = create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        path = Path(url.split(":///", 1)[-1]).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, connect_args={"check_same_thread": False})

    event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory used by every service; one session per operation."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = make_engine(DATABASE_URL)
AsyncSessionLocal = make_session_factory(engine)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency yielding a session."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create missing tables."""
    import localvault.models  # noqa: F401  (registers every table on Base.metadata)

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready (%s)", bind.url.render_as_string(hide_password=True))
