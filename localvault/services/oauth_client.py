"""Delegated authorization against Google (OAuth 2.0 authorization code + PKCE).

This service handles the full delegation lifecycle:
- Authorization URL construction with PKCE (S256) and anti-CSRF state
- Callback validation and authorization code exchange
- Encrypted token custody through the TokenVault
- Transparent, single-flight access token refresh
- Best-effort revocation with unconditional local sign-out
"""

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from localvault.categories import DataCategory, categories_for, scopes_for
from localvault.exceptions import (
    DecryptionFailed,
    NoCategoriesSelected,
    NotAuthenticated,
    PollingTimeout,
    ProviderApiError,
    StateMismatch,
)
from localvault.schemas.auth import AuthorizationResult, CallbackParams, PendingAuthorization
from localvault.services.crypto import (
    CryptoProvider,
    MasterKey,
    base64url_encode,
    generate_code_challenge,
    generate_code_verifier,
)
from localvault.services.ephemeral_store import EphemeralStore
from localvault.services.key_manager import TOKENS_LABEL, KeyHierarchyManager
from localvault.services.token_vault import TokenVault
from localvault.utils.security import mask_secret, sanitize_log_message

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CALLBACK_PATH = "/oauth/google/callback"
PENDING_AUTHORIZATION_KEY = "google_auth_state"


class AuthorizationState(str, Enum):
    """Where the client is in the delegation handshake."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class OAuthProviderConfig:
    """OAuth client credentials and provider endpoints."""

    client_id: str
    client_secret: Optional[str] = None
    authorization_endpoint: str = GOOGLE_AUTH_URL
    token_endpoint: str = GOOGLE_TOKEN_URL
    revocation_endpoint: str = GOOGLE_REVOKE_URL
    userinfo_endpoint: str = GOOGLE_USERINFO_URL

    @classmethod
    def from_env(cls) -> "OAuthProviderConfig":
        """Build the configuration from LOCALVAULT_GOOGLE_* environment variables.

        Raises:
            ValueError: If LOCALVAULT_GOOGLE_CLIENT_ID is not set
        """
        client_id = os.getenv("LOCALVAULT_GOOGLE_CLIENT_ID", "").strip()
        if not client_id:
            raise ValueError("LOCALVAULT_GOOGLE_CLIENT_ID environment variable is not set")
        client_secret = os.getenv("LOCALVAULT_GOOGLE_CLIENT_SECRET", "").strip() or None
        return cls(client_id=client_id, client_secret=client_secret)


def build_redirect_uri(origin: str) -> str:
    """Return the callback URI for an origin."""
    return f"{origin.rstrip('/')}{CALLBACK_PATH}"


def parse_callback_params(url: str) -> CallbackParams:
    """Parse the provider's redirect URL into its query parameters."""
    query = parse_qs(urlsplit(url).query)

    def first(name: str) -> Optional[str]:
        values = query.get(name)
        return values[0] if values and values[0] else None

    return CallbackParams(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )


def _provider_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(body.get("error_description") or error or response.reason_phrase)
    return response.reason_phrase


class DelegatedAuthorizationClient:
    """OAuth 2.0 authorization-code + PKCE client for one identity."""

    def __init__(
        self,
        config: OAuthProviderConfig,
        http_client: httpx.AsyncClient,
        ephemeral_store: EphemeralStore,
        token_vault: TokenVault,
        key_manager: KeyHierarchyManager,
        redirect_uri: str,
        pending_ttl_minutes: int = 10,
        request_timeout: float = 10.0,
    ):
        self.config = config
        self.http = http_client
        self.ephemeral_store = ephemeral_store
        self.token_vault = token_vault
        self.key_manager = key_manager
        self.redirect_uri = redirect_uri
        self.pending_ttl_minutes = pending_ttl_minutes
        self.request_timeout = request_timeout
        self.state = AuthorizationState.IDLE
        self._refresh_lock = asyncio.Lock()

    @property
    def crypto(self) -> CryptoProvider:
        return self.key_manager.crypto

    # ========================================================================
    # Authorization Flow
    # ========================================================================

    async def begin_authorization(self, categories: Iterable[DataCategory | str]) -> str:
        """Start an authorization and return the provider URL to redirect to.

        Generates a PKCE verifier/challenge pair and an anti-CSRF state,
        stashes them as the pending authorization, and builds the
        authorization URL requesting the minimal scope set.

        Args:
            categories: Data categories to request access for

        Returns:
            Authorization URL

        Raises:
            NoCategoriesSelected: If categories is empty
        """
        selected = list(dict.fromkeys(DataCategory(c) for c in categories))
        if not selected:
            raise NoCategoriesSelected()

        verifier = generate_code_verifier(self.crypto)
        challenge = generate_code_challenge(verifier, self.crypto)
        state = base64url_encode(self.crypto.random_bytes(32))

        pending = PendingAuthorization(
            state=state,
            verifier=verifier,
            redirect_uri=self.redirect_uri,
            categories=selected,
            created_at=datetime.now(timezone.utc),
        )
        await self.ephemeral_store.put(
            PENDING_AUTHORIZATION_KEY,
            pending.model_dump(mode="json"),
            ttl_minutes=self.pending_ttl_minutes,
        )
        self.state = AuthorizationState.AWAITING_REDIRECT

        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes_for(selected)),
            "access_type": "offline",
            "prompt": "consent",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        url = f"{self.config.authorization_endpoint}?{urlencode(params)}"

        self.state = AuthorizationState.AWAITING_CALLBACK
        logger.info(
            "Started authorization for %s (state %s...)",
            ", ".join(c.value for c in selected),
            state[:8],
        )
        return url

    async def complete_authorization(
        self, code: str, state: str, master_key: MasterKey
    ) -> AuthorizationResult:
        """Validate the callback and exchange the code for tokens.

        Args:
            code: Authorization code from the callback
            state: State from the callback
            master_key: Vault master key (tokens are encrypted under its
                "tokens" service key)

        Returns:
            AuthorizationResult with the granted scopes, or the provider's
            error description on failure

        Raises:
            StateMismatch: If state differs from the pending authorization
        """
        stored = await self.ephemeral_store.get(PENDING_AUTHORIZATION_KEY)
        if stored is None:
            self.state = AuthorizationState.FAILED
            logger.warning("Authorization callback without a pending authorization")
            return AuthorizationResult(success=False, error="No pending authorization found")

        pending = PendingAuthorization(**stored)
        if not state or not secrets.compare_digest(pending.state, state):
            self.state = AuthorizationState.FAILED
            logger.warning(
                "Authorization state mismatch (received %s...)", sanitize_log_message((state or "")[:8])
            )
            raise StateMismatch()

        # One-time use
        await self.ephemeral_store.delete(PENDING_AUTHORIZATION_KEY)

        try:
            tokens = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "code_verifier": pending.verifier,
                    "redirect_uri": pending.redirect_uri,
                }
            )
        except ProviderApiError as e:
            self.state = AuthorizationState.FAILED
            logger.error("Token exchange failed: %s", sanitize_log_message(e.message))
            return AuthorizationResult(success=False, error=e.message)

        if not tokens.get("access_token"):
            self.state = AuthorizationState.FAILED
            return AuthorizationResult(success=False, error="Token response missing access_token")

        token_key = self.key_manager.derive_service_key(master_key, TOKENS_LABEL)
        record = self.token_vault.seal(tokens, token_key)
        await self.token_vault.put(record)

        self.state = AuthorizationState.AUTHENTICATED
        logger.info("Authorization complete, %d scopes granted", len(record.scopes))
        return AuthorizationResult(success=True, scopes=list(record.scopes))

    async def cancel_authorization(self, reason: Optional[str] = None) -> None:
        """Discard the pending authorization (e.g. the user denied consent)."""
        await self.ephemeral_store.delete(PENDING_AUTHORIZATION_KEY)
        self.state = AuthorizationState.FAILED
        if reason:
            logger.warning("Authorization cancelled: %s", sanitize_log_message(reason))

    # ========================================================================
    # Token Access
    # ========================================================================

    async def get_access_token(self, master_key: MasterKey) -> Optional[str]:
        """Return a live access token, refreshing it once if expired.

        Returns:
            Access token, or None if not authenticated or refresh failed

        Raises:
            NotAuthenticated: If the stored tokens cannot be decrypted
        """
        record = await self.token_vault.get()
        if record is None:
            return None

        try:
            if await self.token_vault.is_expired(record):
                return await self._refresh(master_key, only_if_expired=True)

            token_key = self.key_manager.derive_service_key(master_key, TOKENS_LABEL)
            return self.token_vault.open_access_token(record, token_key)
        except DecryptionFailed as e:
            logger.error("Stored tokens could not be decrypted, re-authorization required")
            raise NotAuthenticated("Stored tokens could not be decrypted - please reconnect") from e

    async def refresh(self, master_key: MasterKey) -> Optional[str]:
        """Exchange the refresh token for a new access token.

        The stored refresh token is kept when the provider does not issue a
        new one. On failure nothing stored is modified.

        Returns:
            New access token, or None on failure
        """
        return await self._refresh(master_key, only_if_expired=False)

    async def _refresh(self, master_key: MasterKey, only_if_expired: bool) -> Optional[str]:
        async with self._refresh_lock:
            record = await self.token_vault.get()
            if record is None:
                return None

            token_key = self.key_manager.derive_service_key(master_key, TOKENS_LABEL)

            # Another task refreshed while we waited for the lock
            if only_if_expired and not await self.token_vault.is_expired(record):
                return self.token_vault.open_access_token(record, token_key)

            refresh_token = self.token_vault.open_refresh_token(record, token_key)
            if not refresh_token:
                logger.warning("Access token expired and no refresh token is stored")
                return None

            try:
                tokens = await self._token_request(
                    {"grant_type": "refresh_token", "refresh_token": refresh_token}
                )
            except ProviderApiError as e:
                logger.error("Token refresh failed: %s", sanitize_log_message(e.message))
                return None

            if not tokens.get("access_token"):
                logger.error("Token refresh response missing access_token")
                return None

            updated = self.token_vault.seal(tokens, token_key, previous=record)
            await self.token_vault.put(updated)
            self.state = AuthorizationState.AUTHENTICATED
            logger.info("Access token refreshed")
            return tokens["access_token"]

    async def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        """POST to the token endpoint.

        Raises:
            ProviderApiError: On a non-200 response or transport failure
        """
        form = {"client_id": self.config.client_id, **data}
        if self.config.client_secret:
            form["client_secret"] = self.config.client_secret

        logger.debug(
            "Token request (%s) for client %s", data.get("grant_type"), mask_secret(self.config.client_id)
        )
        try:
            response = await self.http.post(
                self.config.token_endpoint,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise PollingTimeout("Token endpoint request timed out") from e
        except httpx.HTTPError as e:
            raise ProviderApiError(0, f"Cannot reach token endpoint: {e}") from e

        if response.status_code != 200:
            raise ProviderApiError(response.status_code, _provider_error_message(response))

        try:
            return response.json()
        except ValueError as e:
            raise ProviderApiError(response.status_code, "Malformed token response") from e

    # ========================================================================
    # Revocation and Status
    # ========================================================================

    async def revoke(self, master_key: MasterKey) -> bool:
        """Revoke the access token remotely, then delete local tokens.

        Local tokens are deleted even when remote revocation fails.

        Returns:
            True if remote revocation succeeded (or nothing was stored)
        """
        revoked = True
        try:
            access_token = await self.get_access_token(master_key)
            if access_token:
                response = await self.http.post(
                    self.config.revocation_endpoint,
                    params={"token": access_token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.request_timeout,
                )
                revoked = response.status_code == 200
                if not revoked:
                    logger.warning("Remote token revocation returned %d", response.status_code)
        except (httpx.HTTPError, NotAuthenticated) as e:
            revoked = False
            logger.warning("Remote token revocation failed: %s", sanitize_log_message(str(e)))
        finally:
            await self.token_vault.delete()
            self.state = AuthorizationState.IDLE

        logger.info("Signed out of Google (remote revocation %s)", "ok" if revoked else "failed")
        return revoked

    async def is_authenticated(self) -> bool:
        return await self.token_vault.get() is not None

    async def granted_scopes(self) -> list[str]:
        record = await self.token_vault.get()
        return list(record.scopes) if record else []

    async def authorized_categories(self) -> list[DataCategory]:
        return categories_for(await self.granted_scopes())

    async def is_category_authorized(self, category: DataCategory | str) -> bool:
        return DataCategory(category) in await self.authorized_categories()

    async def get_user_info(self, master_key: MasterKey) -> Optional[dict[str, Any]]:
        """Fetch email, name and picture of the authorized account."""
        access_token = await self.get_access_token(master_key)
        if not access_token:
            return None

        try:
            response = await self.http.get(
                self.config.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.request_timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Userinfo request failed: %s", sanitize_log_message(str(e)))
            return None

        if response.status_code != 200:
            return None

        info = response.json()
        return {
            "email": info.get("email"),
            "name": info.get("name"),
            "picture": info.get("picture"),
        }
