"""OAuth token model holding the encrypted token pair."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class OAuthToken(Base):
    """Encrypted access/refresh token pair for one authenticated identity.

    Both tokens are encrypted under the "tokens" service key. Expiry and
    scopes stay in plaintext so the vault can decide when to refresh
    without decrypting anything.
    """

    __tablename__ = "oauth_tokens"

    identity: Mapped[str] = mapped_column(String(64), primary_key=True)
    access_token: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    refresh_token: Mapped[EncryptedBlob | None] = mapped_column(EncryptedBlobType, nullable=True)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch milliseconds
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<OAuthToken(identity={self.identity}, expires_at={self.expires_at})>"
