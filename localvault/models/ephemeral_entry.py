"""Ephemeral entry model for short-lived flow state."""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from localvault.db import Base


class EphemeralEntry(Base):
    """Short-lived key/value entry with an expiry.

    Holds in-flight authorization state (PKCE verifier, anti-CSRF state,
    redirect URI, requested categories) between the redirect to the
    provider and the callback.
    """

    __tablename__ = "ephemeral_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True, index=True, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Index for efficient cleanup of expired entries
    __table_args__ = (Index("idx_ephemeral_entries_expires_at", "expires_at"),)

    def __repr__(self):
        return f"<EphemeralEntry(key={self.key[:16]}..., expires_at={self.expires_at})>"

    def is_expired(self) -> bool:
        """Check if the entry has expired."""
        now = datetime.now(UTC)
        expires = self.expires_at
        # Handle timezone-naive datetimes from SQLite
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return bool(now > expires)

    @classmethod
    def get_expiry_time(cls, minutes: int = 10) -> datetime:
        """Get expiry timestamp for a new entry (default 10 minutes)."""
        return datetime.now(UTC) + timedelta(minutes=minutes)
