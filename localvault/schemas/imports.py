"""Pydantic schemas for import jobs."""

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from localvault.categories import DataCategory


class ImportStatus(str, Enum):
    """Lifecycle status of one import call."""

    IDLE = "idle"
    IMPORTING = "importing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class ImportProgress(BaseModel):
    """Snapshot of an import's progress.

    Each snapshot handed to a progress callback is the authoritative
    current state, never a delta. total is the provider's estimate and may
    be adjusted while pages arrive.
    """

    category: DataCategory
    total: int = 0
    imported: int = 0
    status: ImportStatus = ImportStatus.IDLE
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


ProgressCallback = Callable[[ImportProgress], Any]


class ImportOptions(BaseModel):
    """Options recognized by every importer, plus category-specific extras.

    Unset options mean: no item cap, full date range, trash and spam
    excluded.
    """

    max_items: int | None = Field(None, ge=1)
    date_after: datetime | None = None
    date_before: datetime | None = None
    include_trashed: bool = False
    on_progress: ProgressCallback | None = Field(default=None, exclude=True)

    # Gmail
    label_ids: list[str] | None = None
    include_spam: bool = False

    # Drive
    folder_id: str | None = None
    mime_types: list[str] | None = None
    include_shared: bool = True
    export_formats: dict[str, str] | None = None

    # Photos
    album_id: str | None = None
    media_types: list[str] | None = None  # image, video
    thumbnail_size: int = Field(256, ge=16, le=2048)

    # Calendar
    calendar_ids: list[str] | None = None
    show_deleted: bool = False

    @model_validator(mode="after")
    def validate_date_range(self) -> "ImportOptions":
        """Reject an empty date window."""
        if self.date_after and self.date_before and self.date_after >= self.date_before:
            raise ValueError("date_after must be earlier than date_before")
        return self


class ImportRequest(BaseModel):
    """Request body for starting an import over the HTTP API."""

    max_items: int | None = Field(None, ge=1)
    date_after: datetime | None = None
    date_before: datetime | None = None
    include_trashed: bool = False
    label_ids: list[str] | None = None
    include_spam: bool = False
    folder_id: str | None = None
    mime_types: list[str] | None = None
    include_shared: bool = True
    export_formats: dict[str, str] | None = None
    album_id: str | None = None
    media_types: list[str] | None = None
    thumbnail_size: int = Field(256, ge=16, le=2048)
    calendar_ids: list[str] | None = None
    show_deleted: bool = False

    def to_options(self) -> ImportOptions:
        return ImportOptions(**self.model_dump())
