"""Tests for the key hierarchy manager (localvault/services/key_manager.py)."""

import pytest

from fakes import FakeCryptoProvider, UnavailableCryptoProvider
from localvault.exceptions import CryptoUnavailable, DecryptionFailed, InvalidKeyMaterial
from localvault.services.crypto import decrypt_to_str, encrypt
from localvault.services.key_manager import (
    MIN_PASSWORD_ITERATIONS,
    SALT_LENGTH,
    KeyHierarchyManager,
)


class TestConstruction:
    """Tests for manager construction."""

    def test_requires_crypto(self):
        with pytest.raises(CryptoUnavailable):
            KeyHierarchyManager(None)

    def test_rejects_unavailable_crypto(self):
        with pytest.raises(CryptoUnavailable):
            KeyHierarchyManager(UnavailableCryptoProvider())

    def test_rejects_too_few_iterations(self, crypto):
        with pytest.raises(InvalidKeyMaterial):
            KeyHierarchyManager(crypto, password_iterations=MIN_PASSWORD_ITERATIONS - 1)


class TestMasterKey:
    """Tests for master key generation, export and import."""

    def test_export_import_roundtrip(self, key_manager, master_key):
        raw = key_manager.export_master_key(master_key)
        assert len(raw) == 32

        restored = key_manager.import_master_key(raw)
        blob = encrypt("payload", master_key)
        assert decrypt_to_str(blob, restored) == "payload"

    def test_generated_keys_differ(self, key_manager):
        first = key_manager.export_master_key(key_manager.generate_master_key())
        second = key_manager.export_master_key(key_manager.generate_master_key())
        assert first != second

    @pytest.mark.parametrize("length", [0, 16, 31, 33, 64])
    def test_import_rejects_wrong_length(self, key_manager, length):
        with pytest.raises(InvalidKeyMaterial):
            key_manager.import_master_key(b"\x00" * length)

    def test_export_rejects_non_extractable(self, key_manager, master_key):
        master_key.extractable = False
        with pytest.raises(InvalidKeyMaterial):
            key_manager.export_master_key(master_key)


class TestServiceKeys:
    """Tests for HKDF service key derivation."""

    def test_derivation_is_deterministic(self, key_manager, master_key):
        first = key_manager.derive_service_key(master_key, "gmail")
        second = key_manager.derive_service_key(master_key, "gmail")
        blob = encrypt("subject", first)
        assert decrypt_to_str(blob, second) == "subject"

    def test_labels_are_isolated(self, key_manager, master_key):
        gmail_key = key_manager.derive_service_key(master_key, "gmail")
        drive_key = key_manager.derive_service_key(master_key, "drive")
        blob = encrypt("subject", gmail_key)
        with pytest.raises(DecryptionFailed):
            decrypt_to_str(blob, drive_key)

    def test_service_key_differs_from_master(self, key_manager, master_key):
        tokens_key = key_manager.derive_service_key(master_key, "tokens")
        blob = encrypt("token", master_key)
        with pytest.raises(DecryptionFailed):
            decrypt_to_str(blob, tokens_key)

    def test_same_master_on_other_manager(self, key_manager, master_key):
        # Derivation depends only on key material and label
        other = KeyHierarchyManager(FakeCryptoProvider(seed=99), password_iterations=MIN_PASSWORD_ITERATIONS)
        restored = other.import_master_key(key_manager.export_master_key(master_key))
        blob = encrypt("x", key_manager.derive_service_key(master_key, "calendar"))
        assert decrypt_to_str(blob, other.derive_service_key(restored, "calendar")) == "x"

    def test_service_key_repr_shows_label_only(self, key_manager, master_key):
        key = key_manager.derive_service_key(master_key, "photos")
        assert repr(key) == "<ServiceKey(label=photos)>"


class TestPasswordWrapping:
    """Tests for PBKDF2 password wrapping of the master key."""

    def test_wrap_unwrap_roundtrip(self, key_manager, master_key):
        blob, salt = key_manager.wrap_master_key_with_password(master_key, "correct horse 1")
        assert len(salt) == SALT_LENGTH

        restored = key_manager.unwrap_master_key_with_password(blob, "correct horse 1", salt)
        assert key_manager.export_master_key(restored) == key_manager.export_master_key(master_key)

    def test_wrong_password_fails(self, key_manager, master_key):
        blob, salt = key_manager.wrap_master_key_with_password(master_key, "correct horse 1")
        with pytest.raises(DecryptionFailed):
            key_manager.unwrap_master_key_with_password(blob, "wrong horse 1", salt)

    def test_wrong_salt_fails(self, key_manager, master_key):
        blob, salt = key_manager.wrap_master_key_with_password(master_key, "pw12345678")
        with pytest.raises(DecryptionFailed):
            key_manager.unwrap_master_key_with_password(blob, "pw12345678", bytes(SALT_LENGTH))

    def test_wrapped_blob_is_not_raw_key(self, key_manager, master_key):
        blob, _ = key_manager.wrap_master_key_with_password(master_key, "pw12345678")
        assert key_manager.export_master_key(master_key) not in blob.ciphertext

    def test_unwrap_with_explicit_iterations(self, crypto, master_key):
        wrapper = KeyHierarchyManager(crypto, password_iterations=MIN_PASSWORD_ITERATIONS + 1)
        blob, salt = wrapper.wrap_master_key_with_password(master_key, "pw12345678")

        reader = KeyHierarchyManager(crypto, password_iterations=MIN_PASSWORD_ITERATIONS)
        with pytest.raises(DecryptionFailed):
            reader.unwrap_master_key_with_password(blob, "pw12345678", salt)
        restored = reader.unwrap_master_key_with_password(
            blob, "pw12345678", salt, iterations=MIN_PASSWORD_ITERATIONS + 1
        )
        assert reader.export_master_key(restored) == reader.export_master_key(master_key)
