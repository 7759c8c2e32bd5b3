"""Per-category persistent store for imported records."""

import logging
from collections.abc import Sequence
from typing import Generic, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from localvault.categories import DataCategory
from localvault.db import Base
from localvault.models import CalendarEvent, DocumentChunk, DriveDocument, MailMessage, PhotoReference

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Base)

CATEGORY_MODELS: dict[DataCategory, type[Base]] = {
    DataCategory.GMAIL: MailMessage,
    DataCategory.DRIVE: DriveDocument,
    DataCategory.PHOTOS: PhotoReference,
    DataCategory.CALENDAR: CalendarEvent,
}

# Rows owned by a category's records, cleared along with them
CATEGORY_CHILD_MODELS: dict[DataCategory, tuple[type[Base], ...]] = {
    DataCategory.DRIVE: (DocumentChunk,),
}


class RecordStore(Generic[RecordT]):
    """get/put/put_batch/count/delete over one category table.

    put and put_batch upsert by primary key, so re-importing an item
    overwrites it instead of duplicating it. put_batch commits every record
    in a single transaction: either the whole batch is durable or none of it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        model: type[RecordT],
        child_models: Sequence[type[Base]] = (),
    ):
        self._session_factory = session_factory
        self.model = model
        self.child_models = tuple(child_models)

    async def get(self, record_id: str) -> Optional[RecordT]:
        """Return the record with record_id, or None."""
        async with self._session_factory() as db:
            return await db.get(self.model, record_id)

    async def put(self, record: RecordT) -> None:
        """Insert or overwrite one record."""
        await self.put_batch([record])

    async def put_batch(self, records: Sequence[RecordT]) -> int:
        """Insert or overwrite records atomically.

        Returns:
            Number of records written
        """
        if not records:
            return 0
        async with self._session_factory() as db:
            async with db.begin():
                for record in records:
                    await db.merge(record)
        logger.debug("Flushed %d %s records", len(records), self.model.__tablename__)
        return len(records)

    async def count(self) -> int:
        """Number of stored records."""
        async with self._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(self.model))
            return int(result.scalar_one())

    async def list_recent(self, limit: int = 100, offset: int = 0) -> list[RecordT]:
        """Return stored records ordered by synced_at (newest first)."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(self.model).order_by(self.model.synced_at.desc()).limit(limit).offset(offset)
            )
            return list(result.scalars().all())

    async def delete(self, record_id: str) -> bool:
        """Delete one record (and its owned rows).

        Returns:
            True if a record was deleted
        """
        async with self._session_factory() as db:
            async with db.begin():
                record = await db.get(self.model, record_id)
                if record is None:
                    return False
                await db.delete(record)
        return True

    async def clear(self) -> int:
        """Delete every record of this category.

        Returns:
            Number of records deleted
        """
        async with self._session_factory() as db:
            async with db.begin():
                for child in self.child_models:
                    await db.execute(delete(child))
                result = await db.execute(delete(self.model))
        logger.info("Cleared %d %s records", result.rowcount, self.model.__tablename__)
        return result.rowcount or 0


def store_for(session_factory: async_sessionmaker, category: DataCategory | str) -> RecordStore:
    """Return the RecordStore for a category."""
    category = DataCategory(category)
    return RecordStore(
        session_factory,
        CATEGORY_MODELS[category],
        CATEGORY_CHILD_MODELS.get(category, ()),
    )
