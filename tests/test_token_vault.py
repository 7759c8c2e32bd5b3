"""Tests for encrypted token custody (localvault/services/token_vault.py)."""

import pytest

from localvault.exceptions import DecryptionFailed
from localvault.models import OAuthToken
from localvault.schemas.auth import TokenRecord
from localvault.services.key_manager import TOKENS_LABEL


@pytest.fixture
def tokens_key(key_manager, master_key):
    return key_manager.derive_service_key(master_key, TOKENS_LABEL)


class TestStorage:
    """Tests for get/put/delete."""

    @pytest.mark.asyncio
    async def test_empty_vault(self, token_vault):
        assert await token_vault.get() is None
        assert await token_vault.is_expired() is True

    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, token_vault, tokens_key):
        record = token_vault.seal(
            {"access_token": "at", "refresh_token": "rt", "expires_in": 3600, "scope": "a b"}, tokens_key
        )
        await token_vault.put(record)

        stored = await token_vault.get()
        assert stored == record
        assert token_vault.open_access_token(stored, tokens_key) == "at"
        assert token_vault.open_refresh_token(stored, tokens_key) == "rt"
        assert stored.scopes == ["a", "b"]

    @pytest.mark.asyncio
    async def test_tokens_encrypted_at_rest(self, token_vault, tokens_key, db):
        record = token_vault.seal({"access_token": "plain-access", "refresh_token": "plain-refresh"}, tokens_key)
        await token_vault.put(record)

        row = await db.get(OAuthToken, "google")
        assert b"plain-access" not in row.access_token.ciphertext
        assert b"plain-refresh" not in row.refresh_token.ciphertext

    @pytest.mark.asyncio
    async def test_put_replaces(self, token_vault, tokens_key):
        await token_vault.put(token_vault.seal({"access_token": "one"}, tokens_key))
        await token_vault.put(token_vault.seal({"access_token": "two"}, tokens_key))
        stored = await token_vault.get()
        assert token_vault.open_access_token(stored, tokens_key) == "two"

    @pytest.mark.asyncio
    async def test_delete(self, token_vault, tokens_key):
        await token_vault.put(token_vault.seal({"access_token": "at"}, tokens_key))
        await token_vault.delete()
        assert await token_vault.get() is None

    @pytest.mark.asyncio
    async def test_wrong_key_cannot_open(self, token_vault, tokens_key, key_manager):
        record = token_vault.seal({"access_token": "at"}, tokens_key)
        other = key_manager.derive_service_key(key_manager.generate_master_key(), TOKENS_LABEL)
        with pytest.raises(DecryptionFailed):
            token_vault.open_access_token(record, other)


class TestExpiry:
    """Tests for the expiry buffer boundary."""

    @pytest.mark.asyncio
    async def test_buffer_boundary(self, token_vault, tokens_key, clock):
        record = token_vault.seal({"access_token": "at", "expires_in": 3600}, tokens_key)
        assert record.expires_at == clock.now + 3_600_000

        # Exactly at expires_at - buffer counts as expired
        clock.now = record.expires_at - 300_000
        assert await token_vault.is_expired(record) is True

        clock.now = record.expires_at - 300_001
        assert await token_vault.is_expired(record) is False

    @pytest.mark.asyncio
    async def test_default_expires_in(self, token_vault, tokens_key, clock):
        record = token_vault.seal({"access_token": "at"}, tokens_key)
        assert record.expires_at == clock.now + 3_600_000


class TestSeal:
    """Tests for sealing token endpoint responses."""

    def test_keeps_previous_refresh_token_and_scopes(self, token_vault, tokens_key):
        first = token_vault.seal({"access_token": "a1", "refresh_token": "r1", "scope": "s1 s2"}, tokens_key)
        second = token_vault.seal({"access_token": "a2"}, tokens_key, previous=first)

        assert second.encrypted_refresh_token == first.encrypted_refresh_token
        assert token_vault.open_refresh_token(second, tokens_key) == "r1"
        assert second.scopes == ["s1", "s2"]

    def test_replaces_refresh_token_when_reissued(self, token_vault, tokens_key):
        first = token_vault.seal({"access_token": "a1", "refresh_token": "r1"}, tokens_key)
        second = token_vault.seal({"access_token": "a2", "refresh_token": "r2"}, tokens_key, previous=first)
        assert token_vault.open_refresh_token(second, tokens_key) == "r2"

    def test_no_refresh_token(self, token_vault, tokens_key):
        record = token_vault.seal({"access_token": "a1"}, tokens_key)
        assert record.encrypted_refresh_token is None
        assert token_vault.open_refresh_token(record, tokens_key) is None


class TestWireFormat:
    """Tests for TokenRecord wire serialization."""

    def test_wire_roundtrip(self, token_vault, tokens_key):
        record = token_vault.seal({"access_token": "a", "refresh_token": "r", "scope": "x"}, tokens_key)
        wire = record.to_wire()
        assert set(wire) == {"encryptedAccessToken", "encryptedRefreshToken", "expiresAt", "scopes"}
        assert set(wire["encryptedAccessToken"]) == {"ciphertext", "iv"}
        assert TokenRecord.from_wire(wire) == record

    def test_wire_without_refresh(self, token_vault, tokens_key):
        record = token_vault.seal({"access_token": "a"}, tokens_key)
        wire = record.to_wire()
        assert wire["encryptedRefreshToken"] is None
        assert TokenRecord.from_wire(wire).encrypted_refresh_token is None
