"""Key hierarchy management for the local vault.

Two-tier key architecture:
- Tier 1: MasterKey (random 256-bit, generated locally, exportable for backup)
- Tier 2: ServiceKeys (HKDF-derived per label such as "gmail" or "tokens",
  never persisted, rederived on demand)

The master key can additionally be wrapped under a password-derived key
(PBKDF2) so that it can be stored at rest and restored on unlock.
"""

import logging
from typing import Optional

from localvault.exceptions import CryptoUnavailable, InvalidKeyMaterial
from localvault.services.crypto import (
    KEY_LENGTH,
    CryptoProvider,
    EncryptedBlob,
    MasterKey,
    ServiceKey,
    decrypt,
    encrypt,
    require_crypto,
)

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD_ITERATIONS = 600_000
MIN_PASSWORD_ITERATIONS = 100_000
SALT_LENGTH = 16

# Fixed labels for non-category service keys
TOKENS_LABEL = "tokens"
BACKUP_LABEL = "backup"


class KeyHierarchyManager:
    """Generate, import, export and derive vault keys.

    Example:
        >>> manager = KeyHierarchyManager(get_crypto_provider())
        >>> master = manager.generate_master_key()
        >>> gmail_key = manager.derive_service_key(master, "gmail")
    """

    def __init__(
        self,
        crypto: Optional[CryptoProvider],
        password_iterations: int = DEFAULT_PASSWORD_ITERATIONS,
    ):
        """Initialize the key manager.

        Args:
            crypto: Cryptographic capability
            password_iterations: PBKDF2 iteration count for password wrapping

        Raises:
            CryptoUnavailable: If no usable crypto capability is given
            InvalidKeyMaterial: If password_iterations is below the minimum
        """
        self.crypto = require_crypto(crypto)
        if password_iterations < MIN_PASSWORD_ITERATIONS:
            raise InvalidKeyMaterial(
                f"Password KDF iterations must be at least {MIN_PASSWORD_ITERATIONS}"
            )
        self.password_iterations = password_iterations

    def _ensure_available(self) -> None:
        if not getattr(self.crypto, "available", False):
            raise CryptoUnavailable("Cryptographic capability is no longer available")

    def generate_master_key(self) -> MasterKey:
        """Generate a fresh random 256-bit master key."""
        self._ensure_available()
        key = MasterKey(self.crypto.random_bytes(KEY_LENGTH), self.crypto)
        logger.info("Generated new master key")
        return key

    def export_master_key(self, key: MasterKey) -> bytes:
        """Export the raw master key bytes for backup.

        Raises:
            InvalidKeyMaterial: If the key is not exportable
        """
        if not key.extractable:
            raise InvalidKeyMaterial("Key is not exportable")
        return bytes(key._material)

    def import_master_key(self, raw: bytes) -> MasterKey:
        """Restore a master key from exported raw bytes.

        Raises:
            InvalidKeyMaterial: If raw is not exactly the exported length
        """
        self._ensure_available()
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != KEY_LENGTH:
            raise InvalidKeyMaterial(f"Master key must be exactly {KEY_LENGTH} bytes")
        return MasterKey(bytes(raw), self.crypto)

    def derive_service_key(self, master: MasterKey, label: str) -> ServiceKey:
        """Derive the non-exportable service key for a label.

        Derivation is deterministic: the same master key and label always
        yield the same service key.

        Args:
            master: Vault master key
            label: Category name or one of the fixed labels ("tokens", "backup")

        Returns:
            ServiceKey for the label
        """
        self._ensure_available()
        label = str(label)
        material = self.crypto.hkdf_sha256(
            master._material,
            salt=f"vault-salt-{label}".encode("utf-8"),
            info=f"vault-{label}".encode("utf-8"),
        )
        return ServiceKey(material, self.crypto, label)

    def _password_key(self, password: str, salt: bytes, iterations: int) -> MasterKey:
        # Password-derived wrapping key, never exported
        material = self.crypto.pbkdf2_sha256(password.encode("utf-8"), salt, iterations)
        key = MasterKey(material, self.crypto)
        key.extractable = False
        return key

    def wrap_master_key_with_password(
        self, master: MasterKey, password: str
    ) -> tuple[EncryptedBlob, bytes]:
        """Encrypt the exported master key under a password-derived key.

        Args:
            master: Vault master key
            password: User password

        Returns:
            Tuple of (wrapped key blob, random 16-byte salt)
        """
        self._ensure_available()
        salt = self.crypto.random_bytes(SALT_LENGTH)
        wrapping_key = self._password_key(password, salt, self.password_iterations)
        blob = encrypt(self.export_master_key(master), wrapping_key)
        logger.info("Wrapped master key with password (%d iterations)", self.password_iterations)
        return blob, salt

    def unwrap_master_key_with_password(
        self,
        blob: EncryptedBlob,
        password: str,
        salt: bytes,
        iterations: Optional[int] = None,
    ) -> MasterKey:
        """Restore the master key from its password-wrapped form.

        Args:
            blob: Wrapped key produced by wrap_master_key_with_password
            password: User password
            salt: Salt returned by wrap_master_key_with_password
            iterations: Iteration count used when wrapping (defaults to current)

        Raises:
            DecryptionFailed: On a wrong password or tampered blob
        """
        self._ensure_available()
        wrapping_key = self._password_key(password, salt, iterations or self.password_iterations)
        raw = decrypt(blob, wrapping_key)
        return self.import_master_key(raw)
