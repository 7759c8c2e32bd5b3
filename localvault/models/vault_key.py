"""Password-wrapped master key storage."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from localvault.db import Base
from localvault.models.types import EncryptedBlobType
from localvault.services.crypto import EncryptedBlob


class VaultKey(Base):
    """Master key wrapped under a password-derived key.

    The raw master key is never stored; only the PBKDF2 salt, iteration
    count and the AES-GCM wrapped key are.
    """

    __tablename__ = "vault_keys"

    key_name: Mapped[str] = mapped_column(String, primary_key=True, index=True)  # 'master'
    wrapped_key: Mapped[EncryptedBlob] = mapped_column(EncryptedBlobType, nullable=False)
    salt: Mapped[str] = mapped_column(String, nullable=False)  # base64
    iterations: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
