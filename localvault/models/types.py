"""Custom column types for encrypted fields."""

from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator

from localvault.services.crypto import EncryptedBlob


class EncryptedBlobType(TypeDecorator):
    """Store an EncryptedBlob as JSON {"ciphertext": <b64>, "iv": <b64>}.

    Only ciphertext ever reaches the database through this type; plain
    strings are rejected on bind.
    """

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, EncryptedBlob):
            raise TypeError(f"Expected EncryptedBlob, got {type(value).__name__}")
        return value.to_dict()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return EncryptedBlob.from_dict(value)
