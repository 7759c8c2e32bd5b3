"""Drive importer: file metadata plus inline, chunked or reference-only content."""

import logging
from datetime import datetime
from typing import Any, Optional

from localvault.categories import DataCategory
from localvault.exceptions import ProviderApiError
from localvault.models import DocumentChunk, DriveDocument
from localvault.schemas.imports import ImportOptions
from localvault.services.crypto import ServiceKey, encrypt
from localvault.services.importers.base import (
    BaseImporter,
    ContentStrategy,
    ListingPage,
    as_utc,
    choose_content_strategy,
    is_google_native,
    split_chunks,
    utcnow,
)

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
LIST_PAGE_SIZE = 100
LIST_FIELDS = (
    "nextPageToken,files(id,name,mimeType,size,modifiedTime,parents,shared,trashed,thumbnailLink)"
)
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Export target for each provider-native document type
DEFAULT_EXPORT_FORMATS = {
    "application/vnd.google-apps.document": "text/markdown",
    "application/vnd.google-apps.spreadsheet": "text/csv",
    "application/vnd.google-apps.presentation": "application/pdf",
    "application/vnd.google-apps.drawing": "image/png",
}


def _rfc3339(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def build_query(options: ImportOptions) -> str:
    """Drive files.list query for folder, type and date filters."""
    parts = []
    if not options.include_trashed:
        parts.append("trashed=false")
    if options.folder_id:
        parts.append(f"'{options.folder_id}' in parents")
    if options.mime_types:
        group = " or ".join(f"mimeType='{mime}'" for mime in options.mime_types)
        parts.append(f"({group})")
    if options.date_after:
        parts.append(f"modifiedTime > '{_rfc3339(options.date_after)}'")
    if options.date_before:
        parts.append(f"modifiedTime < '{_rfc3339(options.date_before)}'")
    return " and ".join(parts)


class DriveImporter(BaseImporter):
    """Import Drive files."""

    category = DataCategory.DRIVE
    default_batch_size = 25

    def export_format_for(self, mime_type: str, options: Optional[ImportOptions] = None) -> Optional[str]:
        formats = dict(DEFAULT_EXPORT_FORMATS)
        if options is not None and options.export_formats:
            formats.update(options.export_formats)
        return formats.get(mime_type)

    async def list_page(self, options: ImportOptions, page_token: Optional[str]) -> ListingPage:
        params: dict[str, Any] = {"pageSize": LIST_PAGE_SIZE, "fields": LIST_FIELDS}
        query = build_query(options)
        if query:
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token

        data = await self.client.get_json(f"{DRIVE_API_BASE}/files", params=params)
        # Drive returns no total; the first page length serves as the estimate
        return ListingPage(items=data.get("files") or [], next_page_token=data.get("nextPageToken"))

    def is_excluded(self, item: dict[str, Any], options: ImportOptions) -> bool:
        if item.get("shared") and not options.include_shared:
            return True
        if item.get("trashed") and not options.include_trashed:
            return True
        return False

    async def _download(self, file_id: str, mime_type: str, options: Optional[ImportOptions] = None) -> bytes:
        if is_google_native(mime_type):
            export_mime = self.export_format_for(mime_type, options)
            if export_mime is None:
                raise ProviderApiError(415, f"No export format for {mime_type}")
            return await self.client.get_bytes(
                f"{DRIVE_API_BASE}/files/{file_id}/export", params={"mimeType": export_mime}
            )
        return await self.client.get_bytes(f"{DRIVE_API_BASE}/files/{file_id}", params={"alt": "media"})

    async def _thumbnail(self, item: dict[str, Any]) -> Optional[bytes]:
        link = item.get("thumbnailLink")
        if not link:
            return None
        try:
            return await self.client.get_bytes(link)
        except ProviderApiError as e:
            logger.debug("Thumbnail unavailable for %s: %s", item.get("id"), e.message)
            return None

    async def build_record(
        self, item: dict[str, Any], key: ServiceKey, options: ImportOptions
    ) -> Optional[DriveDocument]:
        file_id = item["id"]
        mime_type = item.get("mimeType") or "application/octet-stream"
        size = int(item.get("size") or 0)
        strategy = choose_content_strategy(size, mime_type)
        if mime_type == FOLDER_MIME_TYPE:
            strategy = ContentStrategy.REFERENCE_ONLY

        content_blob = None
        chunks: list[DocumentChunk] = []
        if strategy != ContentStrategy.REFERENCE_ONLY:
            try:
                content = await self._download(file_id, mime_type, options)
            except ProviderApiError as e:
                logger.warning(
                    "Content for %s unavailable (%s), keeping reference only", file_id, e.message
                )
                strategy = ContentStrategy.REFERENCE_ONLY
            else:
                if strategy == ContentStrategy.INLINE:
                    content_blob = encrypt(content, key)
                else:
                    chunks = [
                        DocumentChunk(document_id=file_id, index=i, data=encrypt(piece, key))
                        for i, piece in enumerate(split_chunks(content))
                    ]

        preview = await self._thumbnail(item)
        parents = item.get("parents") or []
        name = item.get("name") or ""

        return DriveDocument(
            id=file_id,
            name=encrypt(name, key),
            mime_type=encrypt(mime_type, key),
            path=encrypt(name, key),
            content=content_blob,
            preview=encrypt(preview, key) if preview else None,
            parent_id=parents[0] if parents else None,
            is_shared=bool(item.get("shared")),
            modified_time=_parse_time(item.get("modifiedTime")),
            size=size,
            content_strategy=strategy.value,
            chunk_count=len(chunks),
            chunks=chunks,
            synced_at=utcnow(),
        )

    # ========================================================================
    # On-demand access
    # ========================================================================

    async def fetch_content(self, document_id: str) -> bytes:
        """Download a document's current content from Drive.

        Used for reference-only documents, whose content is never stored.
        """
        if self.client is None:
            await self.open()
        meta = await self.client.get_json(
            f"{DRIVE_API_BASE}/files/{document_id}", params={"fields": "id,mimeType"}
        )
        return await self._download(document_id, meta.get("mimeType") or "")

    async def list_folders(self, parent_id: Optional[str] = None) -> list[dict[str, str]]:
        """List folders directly under parent_id (or the Drive root)."""
        if self.client is None:
            await self.open()
        parent = parent_id or "root"
        query = f"mimeType='{FOLDER_MIME_TYPE}' and trashed=false and '{parent}' in parents"
        folders: list[dict[str, str]] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {
                "q": query,
                "fields": "nextPageToken,files(id,name)",
                "pageSize": LIST_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self.client.get_json(f"{DRIVE_API_BASE}/files", params=params)
            folders.extend({"id": f.get("id"), "name": f.get("name")} for f in data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return folders
