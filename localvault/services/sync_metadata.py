"""Per-category sync bookkeeping."""

import logging
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from localvault.categories import DataCategory
from localvault.models.sync_metadata import SyncMetadata
from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class SyncMetadataTracker:
    """Record sync start, completion, pause and failure per category.

    Callers use needs_resume() to decide whether a category should be
    imported again (never synced, paused, or failed last time).
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _update(self, category: DataCategory | str, **values) -> SyncMetadata:
        category = DataCategory(category).value
        async with self._session_factory() as db:
            row = await db.get(SyncMetadata, category)
            if row is None:
                row = SyncMetadata(category=category, status="idle", item_count=0)
                db.add(row)
            for key, value in values.items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return row

    async def get(self, category: DataCategory | str) -> Optional[SyncMetadata]:
        async with self._session_factory() as db:
            return await db.get(SyncMetadata, DataCategory(category).value)

    async def get_all(self) -> list[SyncMetadata]:
        async with self._session_factory() as db:
            result = await db.execute(select(SyncMetadata).order_by(SyncMetadata.category))
            return list(result.scalars().all())

    async def mark_started(self, category: DataCategory | str) -> SyncMetadata:
        return await self._update(category, status="syncing", last_attempt_at=datetime.now(UTC))

    async def mark_complete(self, category: DataCategory | str, item_count: int) -> SyncMetadata:
        """Record a successful sync.

        Args:
            category: Data category
            item_count: Records held for the category after the sync
        """
        row = await self._update(
            category,
            status="idle",
            last_sync_at=datetime.now(UTC),
            item_count=item_count,
            last_error=None,
        )
        logger.info("Sync complete for %s: %d items", row.category, item_count)
        return row

    async def mark_paused(self, category: DataCategory | str, item_count: int) -> SyncMetadata:
        """Record a cancelled sync; partial items stay counted."""
        return await self._update(category, status="paused", item_count=item_count)

    async def mark_error(self, category: DataCategory | str, message: str) -> SyncMetadata:
        row = await self._update(category, status="error", last_error=message)
        logger.warning("Sync failed for %s: %s", row.category, sanitize_log_message(message))
        return row

    async def reset(self, category: DataCategory | str) -> None:
        """Forget all sync state for a category (after clearing its data)."""
        async with self._session_factory() as db:
            row = await db.get(SyncMetadata, DataCategory(category).value)
            if row is not None:
                await db.delete(row)
                await db.commit()

    async def needs_resume(self, category: DataCategory | str) -> bool:
        row = await self.get(category)
        return row is None or row.last_sync_at is None or row.status in ("paused", "error")
