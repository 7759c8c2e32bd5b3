"""Sync metadata schemas."""

from datetime import datetime

from pydantic import BaseModel


class SyncMetadataSchema(BaseModel):
    """Per-category sync bookkeeping."""

    category: str
    status: str
    last_sync_at: datetime | None = None
    last_attempt_at: datetime | None = None
    item_count: int = 0
    last_error: str | None = None

    model_config = {"from_attributes": True}
