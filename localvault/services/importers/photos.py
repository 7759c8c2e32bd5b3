"""Photos importer: encrypted metadata and thumbnails, full images stay remote."""

import logging
from datetime import datetime
from typing import Any, Optional

from localvault.categories import DataCategory
from localvault.exceptions import ProviderApiError
from localvault.models import PhotoReference
from localvault.schemas.imports import ImportOptions
from localvault.services.crypto import ServiceKey, encrypt, encrypt_optional
from localvault.services.importers.base import (
    BaseImporter,
    ContentStrategy,
    ListingPage,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

PHOTOS_API_BASE = "https://photoslibrary.googleapis.com/v1"
LIST_PAGE_SIZE = 100
ALBUM_PAGE_SIZE = 50


def media_type_of(item: dict[str, Any]) -> str:
    return "video" if (item.get("mediaMetadata") or {}).get("video") is not None else "image"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def thumbnail_url(item: dict[str, Any], size: int) -> str:
    """Sized thumbnail URL; images are center-cropped, videos are not."""
    base_url = item["baseUrl"]
    if media_type_of(item) == "video":
        return f"{base_url}=w{size}-h{size}"
    return f"{base_url}=w{size}-h{size}-c"


class PhotosImporter(BaseImporter):
    """Import Photos media item references."""

    category = DataCategory.PHOTOS
    default_batch_size = 25
    default_item_delay = 0.02

    async def list_page(self, options: ImportOptions, page_token: Optional[str]) -> ListingPage:
        if options.album_id:
            body: dict[str, Any] = {"albumId": options.album_id, "pageSize": LIST_PAGE_SIZE}
            if page_token:
                body["pageToken"] = page_token
            data = await self.client.post_json(f"{PHOTOS_API_BASE}/mediaItems:search", body)
        else:
            params: dict[str, Any] = {"pageSize": LIST_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await self.client.get_json(f"{PHOTOS_API_BASE}/mediaItems", params=params)
        return ListingPage(items=data.get("mediaItems") or [], next_page_token=data.get("nextPageToken"))

    def is_excluded(self, item: dict[str, Any], options: ImportOptions) -> bool:
        if options.media_types and media_type_of(item) not in options.media_types:
            return True
        # The library listing has no server-side date filter
        created = _parse_time((item.get("mediaMetadata") or {}).get("creationTime"))
        if created is not None:
            if options.date_after and created < as_utc(options.date_after):
                return True
            if options.date_before and created >= as_utc(options.date_before):
                return True
        return False

    async def _thumbnail(self, item: dict[str, Any], size: int) -> Optional[bytes]:
        if not item.get("baseUrl"):
            return None
        try:
            # baseUrl links are pre-signed and must not carry the bearer token
            return await self.client.get_bytes(thumbnail_url(item, size), authenticated=False)
        except ProviderApiError as e:
            logger.debug("Thumbnail unavailable for %s: %s", item.get("id"), e.message)
            return None

    async def build_record(
        self, item: dict[str, Any], key: ServiceKey, options: ImportOptions
    ) -> Optional[PhotoReference]:
        metadata = item.get("mediaMetadata") or {}
        width = int(metadata.get("width") or 0)
        height = int(metadata.get("height") or 0)
        size = options.thumbnail_size

        thumbnail = await self._thumbnail(item, size)

        return PhotoReference(
            id=item["id"],
            filename=encrypt(item.get("filename") or "", key),
            description=encrypt_optional(item.get("description"), key),
            thumbnail=encrypt_optional(thumbnail, key),
            location=None,
            media_type=media_type_of(item),
            width=width,
            height=height,
            thumbnail_width=min(size, width) if thumbnail and width else None,
            thumbnail_height=min(size, height) if thumbnail and height else None,
            creation_time=_parse_time(metadata.get("creationTime")),
            album_ids=[options.album_id] if options.album_id else [],
            content_strategy=ContentStrategy.REFERENCE_ONLY.value,
            synced_at=utcnow(),
        )

    # ========================================================================
    # On-demand access
    # ========================================================================

    async def list_albums(self) -> list[dict[str, Any]]:
        """List the user's albums (id, title, media item count)."""
        if self.client is None:
            await self.open()
        albums: list[dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"pageSize": ALBUM_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await self.client.get_json(f"{PHOTOS_API_BASE}/albums", params=params)
            for album in data.get("albums") or []:
                albums.append(
                    {
                        "id": album.get("id"),
                        "title": album.get("title"),
                        "media_items_count": int(album.get("mediaItemsCount") or 0),
                    }
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                return albums

    async def get_full_resolution_url(self, media_item_id: str) -> str:
        """Return a short-lived download URL for the original media."""
        if self.client is None:
            await self.open()
        item = await self.client.get_json(f"{PHOTOS_API_BASE}/mediaItems/{media_item_id}")
        suffix = "=dv" if media_type_of(item) == "video" else "=d"
        return f"{item['baseUrl']}{suffix}"
