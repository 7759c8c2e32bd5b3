"""Short-lived storage for in-flight authorization state."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from localvault.models.ephemeral_entry import EphemeralEntry

logger = logging.getLogger(__name__)


class EphemeralStore(Protocol):
    """Key/value storage whose entries expire after a TTL."""

    async def put(self, key: str, payload: dict[str, Any], ttl_minutes: int = 10) -> None: ...

    async def get(self, key: str) -> Optional[dict[str, Any]]: ...

    async def delete(self, key: str) -> None: ...


async def _cleanup_expired_entries(db: AsyncSession) -> None:
    """Remove expired entries from the database."""
    cutoff = datetime.now(timezone.utc)
    await db.execute(delete(EphemeralEntry).where(EphemeralEntry.expires_at <= cutoff))


class DatabaseEphemeralStore:
    """EphemeralStore backed by the ephemeral_entries table.

    Expired entries are purged on every access and never returned.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def put(self, key: str, payload: dict[str, Any], ttl_minutes: int = 10) -> None:
        """Store payload under key, replacing any existing entry.

        Args:
            key: Entry key
            payload: JSON-serializable payload
            ttl_minutes: Minutes until the entry expires
        """
        async with self._session_factory() as db:
            await _cleanup_expired_entries(db)
            await db.merge(
                EphemeralEntry(
                    key=key,
                    payload=payload,
                    created_at=datetime.now(timezone.utc),
                    expires_at=EphemeralEntry.get_expiry_time(minutes=ttl_minutes),
                )
            )
            await db.commit()
        logger.debug("Stored ephemeral entry: %s...", key[:16])

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the payload for key, or None if missing or expired."""
        async with self._session_factory() as db:
            await _cleanup_expired_entries(db)
            await db.commit()

            result = await db.execute(select(EphemeralEntry).where(EphemeralEntry.key == key))
            entry = result.scalar_one_or_none()

            if not entry:
                return None

            if entry.is_expired():
                logger.warning("Ephemeral entry expired: %s...", key[:16])
                await db.delete(entry)
                await db.commit()
                return None

            return dict(entry.payload)

    async def delete(self, key: str) -> None:
        """Remove the entry for key if present."""
        async with self._session_factory() as db:
            await db.execute(delete(EphemeralEntry).where(EphemeralEntry.key == key))
            await db.commit()
        logger.debug("Deleted ephemeral entry: %s...", key[:16])
