"""Vault facade: master key custody, authorization and import dispatch.

One VaultService lives for the whole process (on app.state). It owns the
single in-memory MasterKey, persists it only in password-wrapped form, and
runs at most one import task per data category.
"""

import asyncio
import base64
import logging
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from localvault.categories import DataCategory
from localvault.exceptions import (
    ImportAlreadyRunning,
    StateMismatch,
    VaultAlreadyInitialized,
    VaultLocked,
    VaultNotInitialized,
)
from localvault.models import SyncMetadata, VaultKey
from localvault.schemas.auth import AuthorizationResult, AuthStatus, CallbackParams
from localvault.schemas.imports import ImportOptions, ImportProgress, ImportStatus
from localvault.schemas.vault import VaultStatus
from localvault.services.crypto import CryptoProvider, MasterKey, get_crypto_provider
from localvault.services.ephemeral_store import DatabaseEphemeralStore, EphemeralStore
from localvault.services.event_bus import EventBus, event_bus as default_event_bus
from localvault.services.importers import BaseImporter, CancellationToken, ImporterConfig, importer_for
from localvault.services.key_manager import DEFAULT_PASSWORD_ITERATIONS, KeyHierarchyManager
from localvault.services.oauth_client import (
    DelegatedAuthorizationClient,
    OAuthProviderConfig,
    build_redirect_uri,
)
from localvault.services.record_store import store_for
from localvault.services.settings_service import SettingsService
from localvault.services.sync_metadata import SyncMetadataTracker
from localvault.services.token_vault import TokenVault
from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

MASTER_KEY_NAME = "master"


class VaultService:
    """Process-wide owner of the master key and the import tasks."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        http_client: Optional[httpx.AsyncClient] = None,
        crypto: Optional[CryptoProvider] = None,
        oauth_config: Optional[OAuthProviderConfig] = None,
        ephemeral_store: Optional[EphemeralStore] = None,
        events: Optional[EventBus] = None,
        importer_config: Optional[ImporterConfig] = None,
        password_iterations: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.crypto = crypto or get_crypto_provider()
        self.key_manager = KeyHierarchyManager(self.crypto)
        self.tracker = SyncMetadataTracker(session_factory)
        self.ephemeral_store = ephemeral_store or DatabaseEphemeralStore(session_factory)
        self.events = events or default_event_bus
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(follow_redirects=True)
        self._oauth_config = oauth_config
        self._importer_config = importer_config
        self._password_iterations = password_iterations

        self._master_key: Optional[MasterKey] = None
        self._auth_client: Optional[DelegatedAuthorizationClient] = None
        self._tasks: dict[DataCategory, asyncio.Task] = {}
        self._cancel_tokens: dict[DataCategory, CancellationToken] = {}
        self._progress: dict[DataCategory, ImportProgress] = {}

    async def aclose(self) -> None:
        """Cancel running imports and release the HTTP client."""
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        if self._owns_http_client:
            await self.http_client.aclose()

    # ========================================================================
    # Master key
    # ========================================================================

    @property
    def is_unlocked(self) -> bool:
        return self._master_key is not None

    def require_master_key(self) -> MasterKey:
        """Return the master key.

        Raises:
            VaultLocked: If the vault is locked
        """
        if self._master_key is None:
            raise VaultLocked()
        return self._master_key

    async def _wrapping_manager(self) -> KeyHierarchyManager:
        iterations = self._password_iterations
        if iterations is None:
            async with self.session_factory() as db:
                iterations = await SettingsService.get_int(
                    db, "password_kdf_iterations", DEFAULT_PASSWORD_ITERATIONS
                )
        return KeyHierarchyManager(self.crypto, iterations)

    async def _load_wrapped_key(self) -> Optional[VaultKey]:
        async with self.session_factory() as db:
            return await db.get(VaultKey, MASTER_KEY_NAME)

    async def _store_wrapped_key(self, master: MasterKey, password: str) -> None:
        manager = await self._wrapping_manager()
        blob, salt = manager.wrap_master_key_with_password(master, password)
        async with self.session_factory() as db:
            await db.merge(
                VaultKey(
                    key_name=MASTER_KEY_NAME,
                    wrapped_key=blob,
                    salt=base64.b64encode(salt).decode("ascii"),
                    iterations=manager.password_iterations,
                )
            )
            await db.commit()

    async def is_initialized(self) -> bool:
        return await self._load_wrapped_key() is not None

    async def status(self) -> VaultStatus:
        return VaultStatus(initialized=await self.is_initialized(), unlocked=self.is_unlocked)

    def _new_master_key(self, key_material: Optional[bytes]) -> MasterKey:
        if key_material is None:
            return self.key_manager.generate_master_key()
        return self.key_manager.import_master_key(key_material)

    async def setup(self, password: str, key_material: Optional[bytes] = None) -> None:
        """Create the vault: new (or restored) master key wrapped under password.

        Raises:
            VaultAlreadyInitialized: If a wrapped master key already exists
        """
        if await self.is_initialized():
            raise VaultAlreadyInitialized()
        master = self._new_master_key(key_material)
        await self._store_wrapped_key(master, password)
        self._master_key = master
        logger.info("Vault initialized%s", " from imported key" if key_material else "")

    async def unlock(self, password: str) -> None:
        """Unwrap the stored master key.

        Raises:
            VaultNotInitialized: If no wrapped master key is stored
            DecryptionFailed: On a wrong password
        """
        row = await self._load_wrapped_key()
        if row is None:
            raise VaultNotInitialized()
        self._master_key = self.key_manager.unwrap_master_key_with_password(
            row.wrapped_key, password, base64.b64decode(row.salt), row.iterations
        )
        logger.info("Vault unlocked")

    async def lock(self) -> None:
        """Forget the in-memory master key and pause running imports."""
        for token in self._cancel_tokens.values():
            token.cancel()
        self._master_key = None
        logger.info("Vault locked")
        await self.events.publish({"type": "vault-locked"})

    async def change_password(self, current_password: str, new_password: str) -> None:
        """Re-wrap the master key under a new password.

        Raises:
            VaultNotInitialized: If no wrapped master key is stored
            DecryptionFailed: If current_password is wrong
        """
        row = await self._load_wrapped_key()
        if row is None:
            raise VaultNotInitialized()
        master = self.key_manager.unwrap_master_key_with_password(
            row.wrapped_key, current_password, base64.b64decode(row.salt), row.iterations
        )
        await self._store_wrapped_key(master, new_password)
        self._master_key = master
        logger.info("Vault password changed")

    def export_key(self) -> bytes:
        """Raw master key bytes for an offline backup."""
        return self.key_manager.export_master_key(self.require_master_key())

    async def verify_password(self, password: str) -> None:
        """Check password against the stored wrapped key without changing state.

        Raises:
            VaultNotInitialized: If no wrapped master key is stored
            DecryptionFailed: On a wrong password
        """
        row = await self._load_wrapped_key()
        if row is None:
            raise VaultNotInitialized()
        self.key_manager.unwrap_master_key_with_password(
            row.wrapped_key, password, base64.b64decode(row.salt), row.iterations
        )

    # ========================================================================
    # Authorization
    # ========================================================================

    async def auth_client(self) -> DelegatedAuthorizationClient:
        """Return the authorization client, building it on first use.

        Raises:
            ValueError: If no OAuth client id is configured
        """
        if self._auth_client is None:
            config = self._oauth_config or OAuthProviderConfig.from_env()
            async with self.session_factory() as db:
                origin = await SettingsService.get(db, "oauth_origin")
                ttl = await SettingsService.get_int(db, "pending_authorization_ttl_minutes", 10)
                buffer_seconds = await SettingsService.get_int(db, "token_expiry_buffer_seconds", 300)
                timeout = await SettingsService.get_float(db, "import_request_timeout", 30.0)
            self._auth_client = DelegatedAuthorizationClient(
                config=config,
                http_client=self.http_client,
                ephemeral_store=self.ephemeral_store,
                token_vault=TokenVault(self.session_factory, expiry_buffer_seconds=buffer_seconds),
                key_manager=self.key_manager,
                redirect_uri=build_redirect_uri(origin),
                pending_ttl_minutes=ttl,
                request_timeout=timeout,
            )
        return self._auth_client

    async def begin_authorization(self, categories: list[DataCategory | str]) -> str:
        client = await self.auth_client()
        return await client.begin_authorization(categories)

    async def complete_authorization(self, params: CallbackParams) -> AuthorizationResult:
        """Finish an authorization from the provider's callback parameters.

        Raises:
            VaultLocked: If the vault is locked
            StateMismatch: If the callback state does not match
        """
        client = await self.auth_client()
        if params.error:
            message = params.error_description or params.error
            await client.cancel_authorization(message)
            return AuthorizationResult(success=False, error=message)
        if not params.state:
            raise StateMismatch("Missing state parameter")
        if not params.code:
            return AuthorizationResult(success=False, error="Missing authorization code")
        return await client.complete_authorization(params.code, params.state, self.require_master_key())

    async def auth_status(self) -> AuthStatus:
        client = await self.auth_client()
        scopes = await client.granted_scopes()
        return AuthStatus(
            authenticated=await client.is_authenticated(),
            scopes=scopes,
            categories=await client.authorized_categories(),
        )

    async def sign_out(self) -> bool:
        """Revoke remotely (best effort) and delete stored tokens."""
        client = await self.auth_client()
        return await client.revoke(self.require_master_key())

    # ========================================================================
    # Imports
    # ========================================================================

    async def importer_config(self) -> ImporterConfig:
        if self._importer_config is not None:
            return self._importer_config
        async with self.session_factory() as db:
            delay_ms = await SettingsService.get(db, "import_item_delay_ms")
            return ImporterConfig(
                request_timeout=await SettingsService.get_float(db, "import_request_timeout", 30.0),
                max_attempts=await SettingsService.get_int(db, "import_max_attempts", 3),
                backoff_base=await SettingsService.get_float(db, "import_backoff_base", 1.0),
                item_delay=float(delay_ms) / 1000 if delay_ms else None,
            )

    async def importer(self, category: DataCategory | str) -> BaseImporter:
        """Build the importer for a category bound to the current master key."""
        category = DataCategory(category)
        importer_cls = importer_for(category)
        return importer_cls(
            master_key=self.require_master_key(),
            key_manager=self.key_manager,
            auth_client=await self.auth_client(),
            http_client=self.http_client,
            session_factory=self.session_factory,
            config=await self.importer_config(),
            tracker=self.tracker,
            events=self.events,
        )

    def is_importing(self, category: DataCategory | str) -> bool:
        task = self._tasks.get(DataCategory(category))
        return task is not None and not task.done()

    def _tracking_options(self, category: DataCategory, options: ImportOptions) -> ImportOptions:
        user_callback = options.on_progress

        def record(progress: ImportProgress):
            self._progress[category] = progress
            if user_callback is not None:
                return user_callback(progress)
            return None

        return options.model_copy(update={"on_progress": record})

    async def run_import(
        self,
        category: DataCategory | str,
        options: Optional[ImportOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ImportProgress:
        """Run one import for a category in the current task.

        Raises:
            VaultLocked: If the vault is locked
        """
        category = DataCategory(category)
        importer = await self.importer(category)
        options = self._tracking_options(category, options or ImportOptions())
        progress = await importer.run(options, cancel)
        self._progress[category] = progress
        return progress

    async def start_import(
        self, category: DataCategory | str, options: Optional[ImportOptions] = None
    ) -> ImportProgress:
        """Start an import as a background task.

        Raises:
            VaultLocked: If the vault is locked
            ImportAlreadyRunning: If an import for the category is in flight
        """
        category = DataCategory(category)
        self.require_master_key()
        if self.is_importing(category):
            raise ImportAlreadyRunning(category.value)

        cancel = CancellationToken()
        self._cancel_tokens[category] = cancel
        initial = ImportProgress(category=category, status=ImportStatus.IMPORTING)
        self._progress[category] = initial

        task = asyncio.create_task(self.run_import(category, options, cancel))
        self._tasks[category] = task

        def finished(done: asyncio.Task) -> None:
            if self._tasks.get(category) is done:
                self._tasks.pop(category, None)
                self._cancel_tokens.pop(category, None)
            if not done.cancelled() and done.exception() is not None:
                error = done.exception()
                logger.error("%s import task failed: %s", category.value, sanitize_log_message(str(error)))
                self._progress[category] = ImportProgress(
                    category=category, status=ImportStatus.ERROR, error_message=str(error)
                )

        task.add_done_callback(finished)
        logger.info("Scheduled %s import", category.value)
        return initial.model_copy()

    def cancel_import(self, category: DataCategory | str) -> bool:
        """Request a running import to pause.

        Returns:
            True if an import was running
        """
        category = DataCategory(category)
        token = self._cancel_tokens.get(category)
        if token is None or not self.is_importing(category):
            return False
        token.cancel()
        logger.info("Pause requested for %s import", category.value)
        return True

    async def wait_for_import(self, category: DataCategory | str) -> Optional[ImportProgress]:
        """Wait for the category's background import to finish."""
        category = DataCategory(category)
        task = self._tasks.get(category)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._progress.get(category)

    def get_progress(self, category: DataCategory | str) -> ImportProgress:
        category = DataCategory(category)
        progress = self._progress.get(category)
        if progress is None:
            return ImportProgress(category=category)
        return progress.model_copy()

    # ========================================================================
    # Sync state and data
    # ========================================================================

    async def sync_status(self) -> list[SyncMetadata]:
        return await self.tracker.get_all()

    async def clear_category(self, category: DataCategory | str) -> int:
        """Delete all records of a category and reset its sync metadata.

        Raises:
            ImportAlreadyRunning: If an import for the category is in flight
        """
        category = DataCategory(category)
        if self.is_importing(category):
            raise ImportAlreadyRunning(category.value)
        deleted = await store_for(self.session_factory, category).clear()
        await self.tracker.reset(category)
        self._progress.pop(category, None)
        logger.info("Cleared %d %s records", deleted, category.value)
        return deleted

