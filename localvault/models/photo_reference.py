"""Imported photo reference model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class PhotoReference(Base):
    """Photos media item: encrypted metadata and thumbnail, no full image.

    Full resolution is always fetched on demand from the provider.
    """

    __tablename__ = "photo_references"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    # Encrypted fields
    filename: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    description: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    thumbnail: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    location: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)

    # Plaintext metadata
    media_type: Mapped[str] = mapped_column(String(10), nullable=False)  # image, video
    width: Mapped[int] = mapped_column(Integer, default=0)
    height: Mapped[int] = mapped_column(Integer, default=0)
    thumbnail_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    thumbnail_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    creation_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    album_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    content_strategy: Mapped[str] = mapped_column(String(20), nullable=False, default="reference-only")
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
