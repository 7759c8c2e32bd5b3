"""Shared import pipeline for all Google data categories.

Each category importer supplies a paginated listing call, a per-item
fetch/transform into an encrypted record, and optional exclusion rules. The
pipeline here handles everything else:
- Access token and category key setup
- Page and item loops in provider order
- Item cap, cooperative cancellation (pause), rate-limit delay
- Batched, atomic writes to the category's record store
- Progress callbacks and SSE progress events
- Sync metadata on completion, pause and failure
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from localvault.categories import DataCategory
from localvault.db import Base
from localvault.exceptions import NotAuthenticated, ProviderApiError
from localvault.schemas.imports import ImportOptions, ImportProgress, ImportStatus
from localvault.services.crypto import MasterKey, ServiceKey
from localvault.services.event_bus import EventBus, event_bus as default_event_bus
from localvault.services.key_manager import KeyHierarchyManager
from localvault.services.oauth_client import DelegatedAuthorizationClient
from localvault.services.provider_client import ProviderClient
from localvault.services.record_store import RecordStore, store_for
from localvault.services.sync_metadata import SyncMetadataTracker
from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
INLINE_MAX_BYTES = 1 * MIB
CHUNKED_MAX_BYTES = 10 * MIB
CHUNK_SIZE = 512 * 1024

GOOGLE_NATIVE_PREFIX = "application/vnd.google-apps."


class ContentStrategy(str, Enum):
    """How an item's content is kept locally."""

    INLINE = "inline"
    CHUNKED = "chunked"
    REFERENCE_ONLY = "reference-only"


def is_google_native(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith(GOOGLE_NATIVE_PREFIX)


def choose_content_strategy(size: Optional[int], mime_type: Optional[str] = None) -> ContentStrategy:
    """Pick the storage strategy for an item's content.

    Provider-native documents carry no byte size and are always stored
    inline (exported). Otherwise: below 1 MiB inline, 1-10 MiB chunked,
    10 MiB and above reference-only.

    Examples:
        >>> choose_content_strategy(500 * 1024)
        <ContentStrategy.INLINE: 'inline'>
        >>> choose_content_strategy(50 * 1024 * 1024)
        <ContentStrategy.REFERENCE_ONLY: 'reference-only'>
    """
    if is_google_native(mime_type):
        return ContentStrategy.INLINE
    size = size or 0
    if size < INLINE_MAX_BYTES:
        return ContentStrategy.INLINE
    if size < CHUNKED_MAX_BYTES:
        return ContentStrategy.CHUNKED
    return ContentStrategy.REFERENCE_ONLY


def split_chunks(content: bytes, chunk_size: int = CHUNK_SIZE) -> list[bytes]:
    return [content[i:i + chunk_size] for i in range(0, len(content), chunk_size)]


class CancellationToken:
    """Cooperative cancellation signal checked at page and item boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ListingPage:
    """One page of a remote listing."""

    items: list[dict[str, Any]]
    next_page_token: Optional[str] = None
    size_estimate: Optional[int] = None


@dataclass
class ImporterConfig:
    """Tunables for one import run (from settings, or test overrides)."""

    request_timeout: float = 30.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    item_delay: Optional[float] = None  # seconds; None uses the importer default
    batch_size: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class BaseImporter(ABC):
    """Import pipeline for one data category.

    Subclasses set category, default_batch_size and default_item_delay and
    implement list_page() and build_record().
    """

    category: DataCategory
    default_batch_size: int = 50
    default_item_delay: float = 0.0

    def __init__(
        self,
        master_key: MasterKey,
        key_manager: KeyHierarchyManager,
        auth_client: DelegatedAuthorizationClient,
        http_client: httpx.AsyncClient,
        session_factory: async_sessionmaker,
        config: Optional[ImporterConfig] = None,
        tracker: Optional[SyncMetadataTracker] = None,
        store: Optional[RecordStore] = None,
        events: Optional[EventBus] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.master_key = master_key
        self.key_manager = key_manager
        self.auth_client = auth_client
        self.http_client = http_client
        self.config = config or ImporterConfig()
        self.tracker = tracker or SyncMetadataTracker(session_factory)
        self.store = store or store_for(session_factory, self.category)
        self.events = events or default_event_bus
        self._sleep = sleep
        self.batch_size = self.config.batch_size or self.default_batch_size
        self.item_delay = (
            self.config.item_delay if self.config.item_delay is not None else self.default_item_delay
        )
        self.client: Optional[ProviderClient] = None

    # ========================================================================
    # Category hooks
    # ========================================================================

    @abstractmethod
    async def list_page(self, options: ImportOptions, page_token: Optional[str]) -> ListingPage:
        """Fetch one page of the remote listing."""

    @abstractmethod
    async def build_record(
        self, item: dict[str, Any], key: ServiceKey, options: ImportOptions
    ) -> Optional[Base]:
        """Fetch full content for a listed item and return its encrypted record.

        Returns None to skip the item.
        """

    def is_excluded(self, item: dict[str, Any], options: ImportOptions) -> bool:
        """Whether a listed item is filtered out before fetching."""
        return False

    async def iter_pages(self, options: ImportOptions) -> AsyncIterator[ListingPage]:
        """Yield listing pages in provider order until no page token remains."""
        page_token: Optional[str] = None
        while True:
            page = await self.list_page(options, page_token)
            yield page
            page_token = page.next_page_token
            if not page_token:
                return

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _token(self, force_refresh: bool) -> Optional[str]:
        if force_refresh:
            return await self.auth_client.refresh(self.master_key)
        return await self.auth_client.get_access_token(self.master_key)

    async def open(self) -> ServiceKey:
        """Obtain a live access token and derive the category key.

        Raises:
            NotAuthenticated: If no access token is available
        """
        access_token = await self.auth_client.get_access_token(self.master_key)
        if not access_token:
            raise NotAuthenticated()

        self.client = ProviderClient(
            self.http_client,
            self._token,
            timeout=self.config.request_timeout,
            max_attempts=self.config.max_attempts,
            backoff_base=self.config.backoff_base,
            backoff_max=self.config.backoff_max,
            access_token=access_token,
        )
        return self.key_manager.derive_service_key(self.master_key, self.category.value)

    async def _emit(self, progress: ImportProgress, options: ImportOptions) -> None:
        snapshot = progress.model_copy()
        if options.on_progress is not None:
            result = options.on_progress(snapshot)
            if inspect.isawaitable(result):
                await result
        await self.events.publish({"type": "import-progress", **snapshot.model_dump(mode="json")})

    async def _flush(self, batch: list[Base]) -> None:
        if batch:
            await self.store.put_batch(list(batch))
            batch.clear()

    async def run(
        self,
        options: Optional[ImportOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ImportProgress:
        """Run one import pass.

        Never raises for pipeline failures: the returned progress is always
        terminal (completed, paused or error). Records flushed before a pause
        or failure stay in the store.

        Args:
            options: Import options (defaults: no cap, full range, no trash/spam)
            cancel: Cancellation token; cancelling pauses the import

        Returns:
            Final ImportProgress
        """
        options = options or ImportOptions()
        cancel = cancel or CancellationToken()
        progress = ImportProgress(
            category=self.category,
            status=ImportStatus.IMPORTING,
            started_at=utcnow(),
        )
        batch: list[Base] = []
        cap = options.max_items

        try:
            key = await self.open()
            await self.tracker.mark_started(self.category)
            await self._emit(progress, options)
            logger.info("Starting %s import", self.category.value)

            listed = 0
            first_page = True
            pages = self.iter_pages(options)
            try:
                while True:
                    if cancel.cancelled:
                        progress.status = ImportStatus.PAUSED
                        break
                    try:
                        page = await anext(pages)
                    except StopAsyncIteration:
                        break

                    listed += len(page.items)
                    if first_page:
                        estimate = page.size_estimate if page.size_estimate is not None else len(page.items)
                        progress.total = estimate
                        first_page = False
                    # Providers estimate; never report fewer than already listed
                    progress.total = max(progress.total, listed)
                    if cap is not None:
                        progress.total = min(progress.total, cap)

                    for item in page.items:
                        if cancel.cancelled:
                            progress.status = ImportStatus.PAUSED
                            break
                        if cap is not None and progress.imported >= cap:
                            break
                        if self.is_excluded(item, options):
                            continue

                        record = await self.build_record(item, key, options)
                        if record is None:
                            continue

                        batch.append(record)
                        progress.imported += 1
                        if len(batch) >= self.batch_size:
                            await self._flush(batch)
                        await self._emit(progress, options)

                        if self.item_delay > 0:
                            await self._sleep(self.item_delay)

                    if progress.status == ImportStatus.PAUSED:
                        break
                    if cap is not None and progress.imported >= cap:
                        break
            finally:
                await pages.aclose()

            await self._flush(batch)
            item_count = await self.store.count()

            if progress.status == ImportStatus.PAUSED:
                await self.tracker.mark_paused(self.category, item_count)
                logger.info(
                    "%s import paused after %d items", self.category.value, progress.imported
                )
            else:
                progress.status = ImportStatus.COMPLETED
                progress.completed_at = utcnow()
                await self.tracker.mark_complete(self.category, item_count)
                logger.info(
                    "%s import completed: %d items imported", self.category.value, progress.imported
                )

        except asyncio.CancelledError:
            progress.status = ImportStatus.PAUSED
            await self._flush(batch)
            await self.tracker.mark_paused(self.category, await self.store.count())
            await self._emit(progress, options)
            logger.info("%s import task cancelled, marked paused", self.category.value)
            raise

        except Exception as e:
            progress.status = ImportStatus.ERROR
            progress.completed_at = utcnow()
            progress.error_message = str(e) or type(e).__name__
            logger.error(
                "%s import failed: %s",
                self.category.value,
                sanitize_log_message(progress.error_message),
                exc_info=not isinstance(e, (NotAuthenticated, ProviderApiError)),
            )
            try:
                await self.tracker.mark_error(self.category, progress.error_message)
            except Exception as tracker_error:
                logger.error(
                    "Could not record %s sync error: %s",
                    self.category.value,
                    sanitize_log_message(str(tracker_error)),
                )

        try:
            await self._emit(progress, options)
        except Exception as e:
            logger.error("Progress callback failed: %s", sanitize_log_message(str(e)))
        return progress
