"""Encrypted custody of the OAuth token pair."""

import logging
import time
from collections.abc import Callable
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from localvault.models.oauth_token import OAuthToken
from localvault.schemas.auth import TokenRecord
from localvault.services.crypto import EncryptedBlob, ServiceKey, decrypt_to_str, encrypt

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY = "google"
DEFAULT_EXPIRY_BUFFER_SECONDS = 300


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class TokenVault:
    """Persist one TokenRecord per identity in the oauth_tokens table.

    The vault never sees plaintext tokens at rest: callers seal tokens with
    the "tokens" service key before put() and open them after get().
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        identity: str = DEFAULT_IDENTITY,
        expiry_buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self._session_factory = session_factory
        self.identity = identity
        self.expiry_buffer_ms = expiry_buffer_seconds * 1000
        self._clock = clock

    async def get(self) -> Optional[TokenRecord]:
        """Return the stored TokenRecord, or None if not authenticated."""
        async with self._session_factory() as db:
            result = await db.execute(select(OAuthToken).where(OAuthToken.identity == self.identity))
            row = result.scalar_one_or_none()
            if not row:
                return None
            return TokenRecord(
                encrypted_access_token=row.access_token,
                encrypted_refresh_token=row.refresh_token,
                expires_at=row.expires_at,
                scopes=list(row.scopes or []),
            )

    async def put(self, record: TokenRecord) -> None:
        """Create or replace the stored TokenRecord."""
        async with self._session_factory() as db:
            await db.merge(
                OAuthToken(
                    identity=self.identity,
                    access_token=record.encrypted_access_token,
                    refresh_token=record.encrypted_refresh_token,
                    expires_at=record.expires_at,
                    scopes=list(record.scopes),
                )
            )
            await db.commit()
        logger.info("Stored encrypted tokens for %s (expires_at=%d)", self.identity, record.expires_at)

    async def delete(self) -> None:
        """Remove the stored TokenRecord."""
        async with self._session_factory() as db:
            await db.execute(delete(OAuthToken).where(OAuthToken.identity == self.identity))
            await db.commit()
        logger.info("Deleted stored tokens for %s", self.identity)

    async def is_expired(self, record: Optional[TokenRecord] = None) -> bool:
        """Check whether the access token is expired or about to expire.

        A missing record counts as expired.
        """
        if record is None:
            record = await self.get()
        if record is None:
            return True
        return self._clock() + self.expiry_buffer_ms >= record.expires_at

    # ========================================================================
    # Sealing helpers
    # ========================================================================

    def seal(
        self,
        token_response: dict[str, Any],
        key: ServiceKey,
        previous: Optional[TokenRecord] = None,
    ) -> TokenRecord:
        """Encrypt a token endpoint response into a TokenRecord.

        When the response carries no refresh token or no scope, the values
        from previous are kept.

        Args:
            token_response: JSON body from the token endpoint
            key: "tokens" service key
            previous: Record being replaced on refresh

        Returns:
            New TokenRecord ready for put()
        """
        refresh_token = token_response.get("refresh_token")
        if refresh_token:
            encrypted_refresh: Optional[EncryptedBlob] = encrypt(refresh_token, key)
        else:
            encrypted_refresh = previous.encrypted_refresh_token if previous else None

        scope = token_response.get("scope")
        if scope:
            scopes = scope.split()
        else:
            scopes = list(previous.scopes) if previous else []

        expires_in = int(token_response.get("expires_in", 3600))
        return TokenRecord(
            encrypted_access_token=encrypt(token_response["access_token"], key),
            encrypted_refresh_token=encrypted_refresh,
            expires_at=self._clock() + expires_in * 1000,
            scopes=scopes,
        )

    @staticmethod
    def open_access_token(record: TokenRecord, key: ServiceKey) -> str:
        """Decrypt the access token (raises DecryptionFailed on a wrong key)."""
        return decrypt_to_str(record.encrypted_access_token, key)

    @staticmethod
    def open_refresh_token(record: TokenRecord, key: ServiceKey) -> Optional[str]:
        """Decrypt the refresh token, or None if the record has none."""
        if record.encrypted_refresh_token is None:
            return None
        return decrypt_to_str(record.encrypted_refresh_token, key)
