"""Imported Drive document and content chunk models."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class DriveDocument(Base):
    """Drive file with encrypted name, type, path, content and preview.

    content is only set for the inline strategy; chunked content lives in
    DocumentChunk rows; reference-only documents store metadata alone.
    """

    __tablename__ = "drive_documents"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    # Encrypted fields
    name: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    mime_type: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    path: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    content: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    preview: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)

    # Plaintext metadata
    parent_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False)
    modified_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    content_strategy: Mapped[str] = mapped_column(String(20), nullable=False, default="inline")
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    chunks: Mapped[list["DocumentChunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentChunk.index",
        lazy="selectin",
    )


class DocumentChunk(Base):
    """One independently encrypted slice of a chunked document's content."""

    __tablename__ = "document_chunks"

    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("drive_documents.id", ondelete="CASCADE"), primary_key=True
    )
    index: Mapped[int] = mapped_column(Integer, primary_key=True)
    data: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)

    document: Mapped[DriveDocument] = relationship(back_populates="chunks")
