"""Symmetric encryption primitives for the local vault.

Provides authenticated encryption for every sensitive value the vault
persists:
- OAuth access and refresh tokens
- Imported record fields (subjects, bodies, filenames, descriptions, ...)
- The password-wrapped master key backup

Uses AES-256-GCM from the cryptography library:
- 96-bit IV, freshly random for every encryption
- 128-bit authentication tag (tampering or a wrong key is always detected)
- HKDF-SHA256 for deterministic per-service key derivation
- PBKDF2-HMAC-SHA256 for password-derived keys

All primitives go through an injected CryptoProvider so that tests can
supply a deterministic source of randomness.
"""

import base64
import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from localvault.exceptions import CryptoUnavailable, DecryptionFailed, InvalidKeyMaterial

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96-bit GCM nonce


class CryptoProvider:
    """Cryptographic capability backed by the cryptography library.

    Every component that needs randomness, encryption or key derivation
    receives an instance of this class instead of reaching for a global.
    """

    available: bool = True

    def random_bytes(self, length: int) -> bytes:
        """Return cryptographically secure random bytes."""
        return os.urandom(length)

    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """Encrypt with AES-GCM, returning ciphertext with the tag appended."""
        return AESGCM(key).encrypt(iv, plaintext, None)

    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """Decrypt AES-GCM ciphertext.

        Raises:
            DecryptionFailed: If the authentication tag does not verify
        """
        try:
            return AESGCM(key).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionFailed("Decryption failed: wrong key or tampered data") from e

    def hkdf_sha256(self, material: bytes, salt: bytes, info: bytes, length: int = KEY_LENGTH) -> bytes:
        """Derive key bytes with HKDF-SHA256."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            info=info,
        )
        return hkdf.derive(material)

    def pbkdf2_sha256(
        self, password: bytes, salt: bytes, iterations: int, length: int = KEY_LENGTH
    ) -> bytes:
        """Derive key bytes from a password with PBKDF2-HMAC-SHA256."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(password)

    def sha256(self, data: bytes) -> bytes:
        """Return the SHA-256 digest of data."""
        return hashlib.sha256(data).digest()


@dataclass(frozen=True)
class EncryptedBlob:
    """Ciphertext plus the IV it was produced with."""

    ciphertext: bytes
    iv: bytes

    def to_dict(self) -> dict[str, str]:
        """Serialize to the at-rest JSON shape (base64 fields)."""
        return {
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "iv": base64.b64encode(self.iv).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedBlob":
        """Deserialize from the at-rest JSON shape."""
        try:
            return cls(
                ciphertext=base64.b64decode(data["ciphertext"]),
                iv=base64.b64decode(data["iv"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionFailed(f"Malformed encrypted blob: {e}") from e


class _SymmetricKey:
    """Raw key material bound to the provider that created it."""

    extractable: bool = False

    def __init__(self, material: bytes, crypto: CryptoProvider):
        if len(material) != KEY_LENGTH:
            raise InvalidKeyMaterial(
                f"Key material must be exactly {KEY_LENGTH} bytes, got {len(material)}"
            )
        self._material = bytes(material)
        self.crypto = crypto

    def __repr__(self):
        # Never expose key material
        return f"<{type(self).__name__}>"


class MasterKey(_SymmetricKey):
    """Root 256-bit key of a vault. Exportable for backup."""

    extractable = True


class ServiceKey(_SymmetricKey):
    """Key derived from the master key for one label. Never exported."""

    def __init__(self, material: bytes, crypto: CryptoProvider, label: str):
        super().__init__(material, crypto)
        self.label = label

    def __repr__(self):
        return f"<ServiceKey(label={self.label})>"


def encrypt(data: str | bytes, key: _SymmetricKey) -> EncryptedBlob:
    """Encrypt a string or bytes under key with a freshly generated IV.

    Args:
        data: Plaintext (strings are UTF-8 encoded)
        key: MasterKey or ServiceKey

    Returns:
        EncryptedBlob holding the ciphertext and its IV
    """
    plaintext = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    iv = key.crypto.random_bytes(IV_LENGTH)
    ciphertext = key.crypto.aead_encrypt(key._material, iv, plaintext)
    return EncryptedBlob(ciphertext=ciphertext, iv=iv)


def decrypt(blob: EncryptedBlob, key: _SymmetricKey) -> bytes:
    """Decrypt an EncryptedBlob.

    Raises:
        DecryptionFailed: If the key is wrong or the blob was tampered with
    """
    if len(blob.iv) != IV_LENGTH:
        raise DecryptionFailed(f"Invalid IV length: {len(blob.iv)}")
    return key.crypto.aead_decrypt(key._material, blob.iv, blob.ciphertext)


def decrypt_to_str(blob: EncryptedBlob, key: _SymmetricKey) -> str:
    """Decrypt an EncryptedBlob holding UTF-8 text."""
    return decrypt(blob, key).decode("utf-8")


def encrypt_optional(data: str | bytes | None, key: _SymmetricKey) -> Optional[EncryptedBlob]:
    """Encrypt data, passing None through unchanged."""
    if data is None:
        return None
    return encrypt(data, key)


def decrypt_optional(blob: Optional[EncryptedBlob], key: _SymmetricKey) -> Optional[str]:
    """Decrypt an optional blob holding UTF-8 text."""
    if blob is None:
        return None
    return decrypt_to_str(blob, key)


# ============================================================================
# PKCE
# ============================================================================


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding (RFC 7636 appendix A)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Decode base64url text, tolerating missing padding."""
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def generate_code_verifier(crypto: CryptoProvider) -> str:
    """Generate a PKCE code verifier from 32 random bytes (43 characters)."""
    return base64url_encode(crypto.random_bytes(32))


def generate_code_challenge(verifier: str, crypto: CryptoProvider) -> str:
    """Derive the S256 PKCE challenge: base64url(sha256(verifier))."""
    return base64url_encode(crypto.sha256(verifier.encode("ascii")))


# Global crypto provider instance (lazy initialization)
_crypto_provider: Optional[CryptoProvider] = None


def get_crypto_provider() -> CryptoProvider:
    """Get or create the global crypto provider instance."""
    global _crypto_provider

    if _crypto_provider is None:
        _crypto_provider = CryptoProvider()
        logger.debug("Crypto provider initialized")

    return _crypto_provider


def require_crypto(crypto: Optional[CryptoProvider]) -> CryptoProvider:
    """Return crypto if usable, otherwise raise CryptoUnavailable."""
    if crypto is None or not getattr(crypto, "available", False):
        raise CryptoUnavailable("No cryptographic capability available")
    return crypto
