"""Gmail importer: messages with encrypted headers, body and snippet."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from localvault.categories import DataCategory
from localvault.exceptions import ProviderApiError
from localvault.models import MailMessage
from localvault.schemas.imports import ImportOptions
from localvault.services.crypto import ServiceKey, base64url_decode, encrypt
from localvault.services.importers.base import (
    BaseImporter,
    ContentStrategy,
    ListingPage,
    as_utc,
    choose_content_strategy,
    utcnow,
)

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
LIST_PAGE_SIZE = 100


def get_header(message: dict[str, Any], name: str) -> str:
    """Case-insensitive header lookup on a full-format message."""
    for header in (message.get("payload") or {}).get("headers") or []:
        if str(header.get("name", "")).lower() == name.lower():
            return str(header.get("value") or "")
    return ""


def decode_part_data(data: Optional[str]) -> str:
    if not data:
        return ""
    try:
        return base64url_decode(data).decode("utf-8", errors="replace")
    except ValueError:
        return ""


def _body_from_parts(parts: list[dict[str, Any]]) -> str:
    plain = ""
    html = ""
    for part in parts:
        mime_type = part.get("mimeType")
        data = (part.get("body") or {}).get("data")
        if mime_type == "text/plain" and data:
            plain = decode_part_data(data)
        elif mime_type == "text/html" and data:
            html = decode_part_data(data)
        elif part.get("parts"):
            nested = _body_from_parts(part["parts"])
            if nested:
                return nested
    return plain or html


def extract_body(message: dict[str, Any]) -> str:
    """Return the message body, preferring text/plain over text/html."""
    payload = message.get("payload") or {}
    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_part_data(data)
    if payload.get("parts"):
        return _body_from_parts(payload["parts"])
    return ""


def has_attachments(message: dict[str, Any]) -> bool:
    for part in (message.get("payload") or {}).get("parts") or []:
        size = (part.get("body") or {}).get("size") or 0
        if size > 0 and part.get("mimeType") not in ("text/plain", "text/html"):
            return True
    return False


def build_query(options: ImportOptions) -> str:
    """Gmail search query for the date window and spam/trash exclusion."""
    parts = []
    if options.date_after:
        parts.append(f"after:{int(as_utc(options.date_after).timestamp())}")
    if options.date_before:
        parts.append(f"before:{int(as_utc(options.date_before).timestamp())}")
    if not options.include_spam:
        parts.append("-in:spam")
    if not options.include_trashed:
        parts.append("-in:trash")
    return " ".join(parts)


class GmailImporter(BaseImporter):
    """Import Gmail messages."""

    category = DataCategory.GMAIL
    default_batch_size = 50
    default_item_delay = 0.05

    async def list_page(self, options: ImportOptions, page_token: Optional[str]) -> ListingPage:
        params: dict[str, Any] = {"maxResults": LIST_PAGE_SIZE}
        query = build_query(options)
        if query:
            params["q"] = query
        if options.label_ids:
            params["labelIds"] = list(options.label_ids)
        if page_token:
            params["pageToken"] = page_token

        data = await self.client.get_json(f"{GMAIL_API_BASE}/messages", params=params)
        return ListingPage(
            items=data.get("messages") or [],
            next_page_token=data.get("nextPageToken"),
            size_estimate=data.get("resultSizeEstimate"),
        )

    async def build_record(
        self, item: dict[str, Any], key: ServiceKey, options: ImportOptions
    ) -> Optional[MailMessage]:
        message_id = item["id"]
        try:
            message = await self.client.get_json(
                f"{GMAIL_API_BASE}/messages/{message_id}", params={"format": "full"}
            )
        except ProviderApiError as e:
            if e.status_code == 404:
                logger.warning("Message %s disappeared before it could be fetched", message_id)
                return None
            raise

        labels = list(message.get("labelIds") or [])
        if not options.include_trashed and "TRASH" in labels:
            return None
        if not options.include_spam and "SPAM" in labels:
            return None

        body = extract_body(message)
        # Bodies are kept in a single blob; oversized ones are left to fetch_body
        strategy = ContentStrategy.INLINE
        if choose_content_strategy(len(body.encode("utf-8"))) == ContentStrategy.REFERENCE_ONLY:
            strategy = ContentStrategy.REFERENCE_ONLY
            body = ""

        internal_date = message.get("internalDate")
        date = (
            datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
            if internal_date
            else None
        )

        return MailMessage(
            id=message_id,
            thread_id=message.get("threadId") or item.get("threadId"),
            subject=encrypt(get_header(message, "Subject"), key),
            body=encrypt(body, key),
            sender=encrypt(get_header(message, "From"), key),
            recipients=encrypt(get_header(message, "To"), key),
            snippet=encrypt(message.get("snippet") or "", key),
            date=date,
            labels=labels,
            has_attachments=has_attachments(message),
            size_estimate=int(message.get("sizeEstimate") or 0),
            content_strategy=strategy.value,
            local_only=True,
            synced_at=utcnow(),
        )

    async def fetch_body(self, message_id: str) -> str:
        """Fetch a message body from Gmail.

        Used for reference-only messages, whose body is never stored.
        """
        if self.client is None:
            await self.open()
        message = await self.client.get_json(
            f"{GMAIL_API_BASE}/messages/{message_id}", params={"format": "full"}
        )
        return extract_body(message)

    async def list_labels(self) -> list[dict[str, str]]:
        """Return the account's labels (id, name, type)."""
        if self.client is None:
            await self.open()
        data = await self.client.get_json(f"{GMAIL_API_BASE}/labels")
        return [
            {"id": label.get("id"), "name": label.get("name"), "type": label.get("type")}
            for label in data.get("labels") or []
        ]
