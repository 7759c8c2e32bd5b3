"""Imported calendar event model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class CalendarEvent(Base):
    """Calendar event with encrypted summary, details and attendees."""

    __tablename__ = "calendar_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    calendar_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Encrypted fields
    summary: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    description: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    location: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    recurrence: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    attendees: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    meeting_link: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)

    # Plaintext metadata
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    timezone: Mapped[str | None] = mapped_column(String, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    reminders: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    content_strategy: Mapped[str] = mapped_column(String(20), nullable=False, default="inline")
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
