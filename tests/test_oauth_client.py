"""Tests for delegated authorization (localvault/services/oauth_client.py)."""

from urllib.parse import parse_qs, urlsplit

import pytest

from localvault.categories import BASE_SCOPES, CATEGORY_SCOPES, DataCategory
from localvault.exceptions import NoCategoriesSelected, StateMismatch
from localvault.models import OAuthToken
from localvault.services.crypto import generate_code_challenge
from localvault.services.key_manager import TOKENS_LABEL
from localvault.services.oauth_client import (
    PENDING_AUTHORIZATION_KEY,
    AuthorizationState,
    OAuthProviderConfig,
    build_redirect_uri,
    parse_callback_params,
)


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


# ============================================================================
# Authorization URL
# ============================================================================


class TestBeginAuthorization:
    """Tests for building the authorization redirect."""

    @pytest.mark.asyncio
    async def test_url_parameters(self, auth_client, ephemeral_store, crypto):
        url = await auth_client.begin_authorization([DataCategory.GMAIL, DataCategory.CALENDAR])

        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        params = _query(url)
        assert params["client_id"] == "test-client-id"
        assert params["redirect_uri"] == "http://localhost:8788/oauth/google/callback"
        assert params["response_type"] == "code"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["code_challenge_method"] == "S256"
        assert params["scope"].split() == [
            *BASE_SCOPES,
            CATEGORY_SCOPES[DataCategory.GMAIL],
            CATEGORY_SCOPES[DataCategory.CALENDAR],
        ]

        pending = await ephemeral_store.get(PENDING_AUTHORIZATION_KEY)
        assert pending["state"] == params["state"]
        assert generate_code_challenge(pending["verifier"], crypto) == params["code_challenge"]
        assert pending["categories"] == ["gmail", "calendar"]
        assert auth_client.state == AuthorizationState.AWAITING_CALLBACK

    @pytest.mark.asyncio
    async def test_duplicate_categories_collapse(self, auth_client):
        url = await auth_client.begin_authorization(["drive", "drive"])
        assert _query(url)["scope"].split() == [*BASE_SCOPES, CATEGORY_SCOPES[DataCategory.DRIVE]]

    @pytest.mark.asyncio
    async def test_no_categories(self, auth_client, ephemeral_store):
        with pytest.raises(NoCategoriesSelected):
            await auth_client.begin_authorization([])
        assert await ephemeral_store.get(PENDING_AUTHORIZATION_KEY) is None

    @pytest.mark.asyncio
    async def test_new_authorization_replaces_pending(self, auth_client, ephemeral_store):
        first = _query(await auth_client.begin_authorization(["gmail"]))["state"]
        second = _query(await auth_client.begin_authorization(["drive"]))["state"]
        assert first != second
        assert (await ephemeral_store.get(PENDING_AUTHORIZATION_KEY))["state"] == second


# ============================================================================
# Callback
# ============================================================================


class TestCompleteAuthorization:
    """Tests for validating the callback and exchanging the code."""

    @pytest.mark.asyncio
    async def test_success_stores_encrypted_tokens(
        self, auth_client, fake_google, token_vault, key_manager, master_key, db
    ):
        state = _query(await auth_client.begin_authorization(["gmail"]))["state"]

        result = await auth_client.complete_authorization("auth-code", state, master_key)

        assert result.success is True
        assert CATEGORY_SCOPES[DataCategory.GMAIL] in result.scopes
        assert auth_client.state == AuthorizationState.AUTHENTICATED

        request = fake_google.token_requests[-1]
        assert request["grant_type"] == "authorization_code"
        assert request["code"] == "auth-code"
        assert request["client_secret"] == "test-client-secret"
        assert request["redirect_uri"] == "http://localhost:8788/oauth/google/callback"
        assert len(request["code_verifier"]) == 43

        record = await token_vault.get()
        token_key = key_manager.derive_service_key(master_key, TOKENS_LABEL)
        assert token_vault.open_access_token(record, token_key) == "access-2"
        assert token_vault.open_refresh_token(record, token_key) == "refresh-1"

        row = await db.get(OAuthToken, "google")
        assert b"access-2" not in row.access_token.ciphertext

    @pytest.mark.asyncio
    async def test_pending_is_single_use(self, auth_client, master_key):
        state = _query(await auth_client.begin_authorization(["gmail"]))["state"]
        await auth_client.complete_authorization("auth-code", state, master_key)

        replay = await auth_client.complete_authorization("auth-code", state, master_key)
        assert replay.success is False

    @pytest.mark.asyncio
    async def test_state_mismatch(self, auth_client, ephemeral_store, token_vault, master_key):
        await auth_client.begin_authorization(["gmail"])

        with pytest.raises(StateMismatch):
            await auth_client.complete_authorization("auth-code", "forged-state", master_key)

        assert await token_vault.get() is None
        assert await ephemeral_store.get(PENDING_AUTHORIZATION_KEY) is not None
        assert auth_client.state == AuthorizationState.FAILED

    @pytest.mark.asyncio
    async def test_no_pending_authorization(self, auth_client, fake_google, master_key):
        result = await auth_client.complete_authorization("auth-code", "any-state", master_key)
        assert result.success is False
        assert result.error == "No pending authorization found"
        assert fake_google.token_requests == []

    @pytest.mark.asyncio
    async def test_provider_error(self, auth_client, fake_google, token_vault, master_key):
        fake_google.token_responses.append(
            (400, {"error": "invalid_grant", "error_description": "Bad Request"})
        )
        state = _query(await auth_client.begin_authorization(["gmail"]))["state"]

        result = await auth_client.complete_authorization("auth-code", state, master_key)

        assert result.success is False
        assert result.error == "Bad Request"
        assert await token_vault.get() is None

    @pytest.mark.asyncio
    async def test_cancel_authorization(self, auth_client, ephemeral_store):
        await auth_client.begin_authorization(["gmail"])
        await auth_client.cancel_authorization("access_denied")
        assert await ephemeral_store.get(PENDING_AUTHORIZATION_KEY) is None
        assert auth_client.state == AuthorizationState.FAILED


# ============================================================================
# Token access and refresh
# ============================================================================


class TestAccessTokens:
    """Tests for get_access_token and refresh."""

    @pytest.mark.asyncio
    async def test_not_authenticated(self, auth_client, master_key):
        assert await auth_client.get_access_token(master_key) is None
        assert await auth_client.refresh(master_key) is None

    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(
        self, auth_client, authenticated, fake_google, master_key
    ):
        assert await auth_client.get_access_token(master_key) == "access-1"
        assert fake_google.token_requests == []

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(
        self, auth_client, authenticated, fake_google, token_vault, key_manager, master_key, clock
    ):
        clock.now = authenticated.expires_at

        token = await auth_client.get_access_token(master_key)

        assert token == "access-2"
        assert fake_google.token_requests[-1] == {
            "client_id": "test-client-id",
            "client_secret": "test-client-secret",
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
        }
        record = await token_vault.get()
        token_key = key_manager.derive_service_key(master_key, TOKENS_LABEL)
        # Refresh response carries no refresh token or scope: previous ones are kept
        assert token_vault.open_refresh_token(record, token_key) == "refresh-1"
        assert record.scopes == authenticated.scopes
        assert record.expires_at == clock.now + 3_600_000

    @pytest.mark.asyncio
    async def test_failed_refresh_leaves_tokens(
        self, auth_client, authenticated, fake_google, token_vault, master_key
    ):
        fake_google.token_responses.append((400, {"error": "invalid_grant"}))

        assert await auth_client.refresh(master_key) is None
        assert await token_vault.get() == authenticated

    @pytest.mark.asyncio
    async def test_expired_token_with_rejected_refresh(
        self, auth_client, authenticated, fake_google, token_vault, master_key, clock
    ):
        clock.now = authenticated.expires_at + 60_000
        fake_google.token_responses.append((400, {"error": "invalid_grant"}))

        assert await auth_client.get_access_token(master_key) is None
        assert len(fake_google.token_requests) == 1
        assert fake_google.token_requests[0]["grant_type"] == "refresh_token"
        assert await token_vault.get() == authenticated

    @pytest.mark.asyncio
    async def test_forced_refresh(self, auth_client, authenticated, master_key):
        assert await auth_client.refresh(master_key) == "access-2"
        assert await auth_client.get_access_token(master_key) == "access-2"


# ============================================================================
# Revocation, status, helpers
# ============================================================================


class TestRevocation:
    """Tests for revoke."""

    @pytest.mark.asyncio
    async def test_revoke(self, auth_client, authenticated, fake_google, token_vault, master_key):
        assert await auth_client.revoke(master_key) is True
        assert fake_google.revoked == ["access-1"]
        assert await token_vault.get() is None
        assert auth_client.state == AuthorizationState.IDLE

    @pytest.mark.asyncio
    async def test_local_tokens_deleted_when_remote_fails(
        self, auth_client, authenticated, fake_google, token_vault, master_key
    ):
        fake_google.revoke_status = 400
        assert await auth_client.revoke(master_key) is False
        assert await token_vault.get() is None

    @pytest.mark.asyncio
    async def test_revoke_wrong_master_key(
        self, auth_client, authenticated, key_manager, token_vault
    ):
        other = key_manager.generate_master_key()
        assert await auth_client.revoke(other) is False
        assert await token_vault.get() is None


class TestStatus:
    """Tests for status helpers."""

    @pytest.mark.asyncio
    async def test_authorized_categories(self, auth_client, authenticated):
        assert await auth_client.is_authenticated() is True
        assert set(await auth_client.authorized_categories()) == set(DataCategory)
        assert await auth_client.is_category_authorized("photos") is True

    @pytest.mark.asyncio
    async def test_unauthenticated_status(self, auth_client):
        assert await auth_client.is_authenticated() is False
        assert await auth_client.granted_scopes() == []
        assert await auth_client.is_category_authorized(DataCategory.GMAIL) is False

    @pytest.mark.asyncio
    async def test_user_info(self, auth_client, authenticated, master_key):
        info = await auth_client.get_user_info(master_key)
        assert info == {"email": "user@example.com", "name": "Test User", "picture": "https://p"}


class TestHelpers:
    """Tests for module-level helpers."""

    def test_parse_callback_params(self):
        params = parse_callback_params(
            "http://localhost:8788/oauth/google/callback?code=abc&state=xyz"
        )
        assert params.code == "abc"
        assert params.state == "xyz"
        assert params.error is None

    def test_parse_callback_error(self):
        params = parse_callback_params(
            "http://localhost/oauth/google/callback?error=access_denied&error_description=User+denied&state="
        )
        assert params.error == "access_denied"
        assert params.error_description == "User denied"
        assert params.state is None
        assert params.code is None

    def test_build_redirect_uri(self):
        assert build_redirect_uri("http://localhost:8788/") == "http://localhost:8788/oauth/google/callback"

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("LOCALVAULT_GOOGLE_CLIENT_ID", " my-client ")
        monkeypatch.delenv("LOCALVAULT_GOOGLE_CLIENT_SECRET", raising=False)
        config = OAuthProviderConfig.from_env()
        assert config.client_id == "my-client"
        assert config.client_secret is None

    def test_config_from_env_missing(self, monkeypatch):
        monkeypatch.setenv("LOCALVAULT_GOOGLE_CLIENT_ID", "")
        with pytest.raises(ValueError):
            OAuthProviderConfig.from_env()
