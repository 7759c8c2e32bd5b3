"""Imported mail message model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class MailMessage(Base):
    """Gmail message with every content field encrypted under the gmail key."""

    __tablename__ = "mail_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Encrypted fields
    subject: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    body: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    sender: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    recipients: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    snippet: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)

    # Plaintext metadata for sorting and filtering
    date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    has_attachments: Mapped[bool] = mapped_column(Boolean, default=False)
    size_estimate: Mapped[int] = mapped_column(Integer, default=0)
    content_strategy: Mapped[str] = mapped_column(String(20), nullable=False, default="inline")
    local_only: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
