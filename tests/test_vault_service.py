"""Tests for the vault facade (localvault/services/vault_service.py)."""

import base64

import pytest

from fakes import connect_google
from localvault.categories import DataCategory
from localvault.exceptions import (
    DecryptionFailed,
    ImportAlreadyRunning,
    InvalidKeyMaterial,
    StateMismatch,
    VaultAlreadyInitialized,
    VaultLocked,
    VaultNotInitialized,
)
from localvault.models import VaultKey
from localvault.schemas.auth import CallbackParams
from localvault.schemas.imports import ImportOptions, ImportStatus
from localvault.services.key_manager import MIN_PASSWORD_ITERATIONS, SALT_LENGTH
from localvault.services.oauth_client import PENDING_AUTHORIZATION_KEY
from localvault.services.settings_service import SettingsService
from localvault.services.vault_service import MASTER_KEY_NAME, VaultService

PASSWORD = "correct-horse-1"


@pytest.fixture
async def unlocked_vault(vault):
    await vault.setup(PASSWORD)
    return vault


@pytest.fixture
async def connected_vault(unlocked_vault):
    result = await connect_google(unlocked_vault)
    assert result.success
    return unlocked_vault


# ============================================================================
# Master key lifecycle
# ============================================================================


class TestMasterKeyLifecycle:
    """Tests for setup, unlock, lock and password changes."""

    @pytest.mark.asyncio
    async def test_fresh_vault(self, vault):
        status = await vault.status()
        assert status.initialized is False
        assert status.unlocked is False
        with pytest.raises(VaultLocked):
            vault.require_master_key()

    @pytest.mark.asyncio
    async def test_setup_stores_wrapped_key(self, vault, db):
        await vault.setup(PASSWORD)

        status = await vault.status()
        assert status.initialized is True
        assert status.unlocked is True

        row = await db.get(VaultKey, MASTER_KEY_NAME)
        assert row.iterations == MIN_PASSWORD_ITERATIONS
        assert len(base64.b64decode(row.salt)) == SALT_LENGTH
        assert vault.export_key() not in row.wrapped_key.ciphertext

    @pytest.mark.asyncio
    async def test_setup_twice(self, unlocked_vault):
        with pytest.raises(VaultAlreadyInitialized):
            await unlocked_vault.setup("another-pass-2")

    @pytest.mark.asyncio
    async def test_setup_from_backup(self, vault):
        material = bytes(range(32))
        await vault.setup(PASSWORD, key_material=material)
        assert vault.export_key() == material

    @pytest.mark.asyncio
    async def test_setup_rejects_bad_backup(self, vault):
        with pytest.raises(InvalidKeyMaterial):
            await vault.setup(PASSWORD, key_material=b"short")
        assert await vault.is_initialized() is False

    @pytest.mark.asyncio
    async def test_lock_and_unlock(self, unlocked_vault):
        exported = unlocked_vault.export_key()

        await unlocked_vault.lock()
        assert unlocked_vault.is_unlocked is False
        with pytest.raises(VaultLocked):
            unlocked_vault.export_key()

        await unlocked_vault.unlock(PASSWORD)
        assert unlocked_vault.export_key() == exported

    @pytest.mark.asyncio
    async def test_wrong_password(self, unlocked_vault):
        await unlocked_vault.lock()
        with pytest.raises(DecryptionFailed):
            await unlocked_vault.unlock("wrong-password-1")
        assert unlocked_vault.is_unlocked is False

    @pytest.mark.asyncio
    async def test_unlock_uninitialized(self, vault):
        with pytest.raises(VaultNotInitialized):
            await vault.unlock(PASSWORD)

    @pytest.mark.asyncio
    async def test_change_password(self, unlocked_vault):
        exported = unlocked_vault.export_key()
        await unlocked_vault.change_password(PASSWORD, "new-password-2")
        await unlocked_vault.lock()

        with pytest.raises(DecryptionFailed):
            await unlocked_vault.unlock(PASSWORD)
        await unlocked_vault.unlock("new-password-2")
        assert unlocked_vault.export_key() == exported

    @pytest.mark.asyncio
    async def test_verify_password(self, unlocked_vault):
        await unlocked_vault.verify_password(PASSWORD)
        with pytest.raises(DecryptionFailed):
            await unlocked_vault.verify_password("wrong-password-1")
        assert unlocked_vault.is_unlocked is True

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, unlocked_vault):
        with pytest.raises(DecryptionFailed):
            await unlocked_vault.change_password("not-it-1", "new-password-2")

    @pytest.mark.asyncio
    async def test_unlock_survives_restart(self, unlocked_vault, session_factory, http_client, crypto, oauth_config):
        exported = unlocked_vault.export_key()
        restarted = VaultService(
            session_factory,
            http_client=http_client,
            crypto=crypto,
            oauth_config=oauth_config,
            password_iterations=MIN_PASSWORD_ITERATIONS,
        )
        assert (await restarted.status()).unlocked is False
        await restarted.unlock(PASSWORD)
        assert restarted.export_key() == exported

    @pytest.mark.asyncio
    async def test_kdf_iterations_from_settings(self, session_factory, http_client, crypto, oauth_config, db):
        await SettingsService.set(db, "password_kdf_iterations", str(MIN_PASSWORD_ITERATIONS + 5))
        service = VaultService(session_factory, http_client=http_client, crypto=crypto, oauth_config=oauth_config)

        await service.setup(PASSWORD)

        row = await db.get(VaultKey, MASTER_KEY_NAME)
        assert row.iterations == MIN_PASSWORD_ITERATIONS + 5


# ============================================================================
# Authorization
# ============================================================================


class TestAuthorization:
    """Tests for the authorization flow through the facade."""

    @pytest.mark.asyncio
    async def test_connect(self, unlocked_vault, fake_google):
        result = await connect_google(unlocked_vault, ["gmail"])

        assert result.success is True
        status = await unlocked_vault.auth_status()
        assert status.authenticated is True
        assert set(status.categories) == set(DataCategory)
        assert fake_google.token_requests[0]["redirect_uri"].endswith("/oauth/google/callback")

    @pytest.mark.asyncio
    async def test_provider_denied(self, unlocked_vault, ephemeral_store):
        await unlocked_vault.begin_authorization(["gmail"])

        result = await unlocked_vault.complete_authorization(
            CallbackParams(error="access_denied", error_description="User denied access")
        )

        assert result.success is False
        assert result.error == "User denied access"
        assert await ephemeral_store.get(PENDING_AUTHORIZATION_KEY) is None

    @pytest.mark.asyncio
    async def test_missing_state(self, unlocked_vault):
        await unlocked_vault.begin_authorization(["gmail"])
        with pytest.raises(StateMismatch):
            await unlocked_vault.complete_authorization(CallbackParams(code="auth-code"))

    @pytest.mark.asyncio
    async def test_missing_code(self, unlocked_vault):
        await unlocked_vault.begin_authorization(["gmail"])
        result = await unlocked_vault.complete_authorization(CallbackParams(state="abc"))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_callback_while_locked(self, unlocked_vault):
        url = await unlocked_vault.begin_authorization(["gmail"])
        await unlocked_vault.lock()
        state = url.split("state=")[1].split("&")[0]
        with pytest.raises(VaultLocked):
            await unlocked_vault.complete_authorization(CallbackParams(code="auth-code", state=state))

    @pytest.mark.asyncio
    async def test_sign_out(self, connected_vault, fake_google):
        assert await connected_vault.sign_out() is True
        assert fake_google.revoked == ["access-2"]
        assert (await connected_vault.auth_status()).authenticated is False

    @pytest.mark.asyncio
    async def test_missing_client_id(self, session_factory, http_client, monkeypatch):
        monkeypatch.delenv("LOCALVAULT_GOOGLE_CLIENT_ID", raising=False)
        service = VaultService(session_factory, http_client=http_client)
        with pytest.raises(ValueError):
            await service.auth_client()


# ============================================================================
# Imports
# ============================================================================


class TestImports:
    """Tests for background imports and data management."""

    @pytest.mark.asyncio
    async def test_start_and_wait(self, connected_vault, fake_google):
        fake_google.add_messages(20)

        initial = await connected_vault.start_import("gmail")
        assert initial.status == ImportStatus.IMPORTING
        assert connected_vault.is_importing("gmail") is True

        final = await connected_vault.wait_for_import("gmail")

        assert final.status == ImportStatus.COMPLETED
        assert final.imported == 20
        assert connected_vault.is_importing("gmail") is False
        assert connected_vault.get_progress("gmail").imported == 20

        [meta] = await connected_vault.sync_status()
        assert meta.category == "gmail"
        assert meta.item_count == 20

    @pytest.mark.asyncio
    async def test_already_running(self, connected_vault, fake_google):
        fake_google.add_messages(5)
        await connected_vault.start_import(DataCategory.GMAIL)

        with pytest.raises(ImportAlreadyRunning):
            await connected_vault.start_import(DataCategory.GMAIL)

        await connected_vault.wait_for_import(DataCategory.GMAIL)

    @pytest.mark.asyncio
    async def test_cancel_import(self, connected_vault, fake_google):
        fake_google.add_messages(50)
        await connected_vault.start_import("gmail")

        assert connected_vault.cancel_import("gmail") is True
        final = await connected_vault.wait_for_import("gmail")

        assert final.status == ImportStatus.PAUSED
        assert connected_vault.cancel_import("gmail") is False

    @pytest.mark.asyncio
    async def test_start_while_locked(self, connected_vault):
        await connected_vault.lock()
        with pytest.raises(VaultLocked):
            await connected_vault.start_import("gmail")

    @pytest.mark.asyncio
    async def test_run_import_with_options(self, connected_vault, fake_google):
        fake_google.add_messages(30)
        seen = []

        progress = await connected_vault.run_import(
            "gmail", ImportOptions(max_items=5, on_progress=lambda p: seen.append(p.imported))
        )

        assert progress.imported == 5
        assert seen[-1] == 5
        assert connected_vault.get_progress("gmail").status == ImportStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_idle_progress(self, vault):
        progress = vault.get_progress("photos")
        assert progress.status == ImportStatus.IDLE
        assert progress.imported == 0

    @pytest.mark.asyncio
    async def test_clear_category(self, connected_vault, fake_google):
        fake_google.add_messages(12)
        await connected_vault.run_import("gmail")

        assert await connected_vault.clear_category("gmail") == 12
        assert await connected_vault.sync_status() == []
        assert connected_vault.get_progress("gmail").status == ImportStatus.IDLE

    @pytest.mark.asyncio
    async def test_clear_while_importing(self, connected_vault, fake_google):
        fake_google.add_messages(5)
        await connected_vault.start_import("gmail")

        with pytest.raises(ImportAlreadyRunning):
            await connected_vault.clear_category("gmail")

        await connected_vault.wait_for_import("gmail")

    @pytest.mark.asyncio
    async def test_importer_config_from_settings(self, session_factory, http_client, db):
        await SettingsService.set(db, "import_item_delay_ms", "250")
        await SettingsService.set(db, "import_max_attempts", "5")
        service = VaultService(session_factory, http_client=http_client)

        config = await service.importer_config()

        assert config.item_delay == 0.25
        assert config.max_attempts == 5
        assert config.backoff_base == 1.0
