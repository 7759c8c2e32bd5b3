"""Calendar importer: events across one or more calendars."""

import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import quote

from localvault.categories import DataCategory
from localvault.models import CalendarEvent
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

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
LIST_PAGE_SIZE = 250
DEFAULT_CALENDAR_ID = "primary"
DEFAULT_LOOKBACK = timedelta(days=2 * 365)
DEFAULT_LOOKAHEAD = timedelta(days=365)
DEFAULT_REMINDERS = [{"method": "popup", "minutes": 10}]

# Injected into listed items so build_record knows the source calendar
CALENDAR_ID_KEY = "_calendar_id"


def _rfc3339(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def parse_event_time(value: Optional[dict[str, Any]]) -> tuple[Optional[datetime], bool]:
    """Parse an event start/end into (datetime, is_all_day)."""
    if not value:
        return None, False
    if value.get("date"):
        return as_utc(datetime.fromisoformat(value["date"])), True
    if value.get("dateTime"):
        return datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00")), False
    return None, False


def meeting_link_of(event: dict[str, Any]) -> Optional[str]:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    for entry in (event.get("conferenceData") or {}).get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return None


def reminders_of(event: dict[str, Any]) -> list[dict[str, Any]]:
    reminders = event.get("reminders") or {}
    if reminders.get("overrides"):
        return list(reminders["overrides"])
    if reminders.get("useDefault"):
        return list(DEFAULT_REMINDERS)
    return []


class CalendarImporter(BaseImporter):
    """Import calendar events."""

    category = DataCategory.CALENDAR
    default_batch_size = 50

    def time_window(self, options: ImportOptions) -> tuple[datetime, datetime]:
        now = utcnow()
        time_min = as_utc(options.date_after) if options.date_after else now - DEFAULT_LOOKBACK
        time_max = as_utc(options.date_before) if options.date_before else now + DEFAULT_LOOKAHEAD
        return time_min, time_max

    async def list_events_page(
        self, calendar_id: str, options: ImportOptions, page_token: Optional[str]
    ) -> ListingPage:
        time_min, time_max = self.time_window(options)
        params: dict[str, Any] = {
            "maxResults": LIST_PAGE_SIZE,
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
        }
        if options.show_deleted:
            params["showDeleted"] = "true"
        if page_token:
            params["pageToken"] = page_token

        data = await self.client.get_json(
            f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events", params=params
        )
        items = [{**event, CALENDAR_ID_KEY: calendar_id} for event in data.get("items") or []]
        return ListingPage(items=items, next_page_token=data.get("nextPageToken"))

    async def list_page(self, options: ImportOptions, page_token: Optional[str]) -> ListingPage:
        calendar_ids = options.calendar_ids or [DEFAULT_CALENDAR_ID]
        return await self.list_events_page(calendar_ids[0], options, page_token)

    async def iter_pages(self, options: ImportOptions) -> AsyncIterator[ListingPage]:
        """Yield every page of every selected calendar, one calendar at a time."""
        for calendar_id in options.calendar_ids or [DEFAULT_CALENDAR_ID]:
            page_token: Optional[str] = None
            while True:
                page = await self.list_events_page(calendar_id, options, page_token)
                yield page
                page_token = page.next_page_token
                if not page_token:
                    break

    def is_excluded(self, item: dict[str, Any], options: ImportOptions) -> bool:
        return item.get("status") == "cancelled" and not options.show_deleted

    async def build_record(
        self, item: dict[str, Any], key: ServiceKey, options: ImportOptions
    ) -> Optional[CalendarEvent]:
        start_time, is_all_day = parse_event_time(item.get("start"))
        end_time, _ = parse_event_time(item.get("end"))
        recurrence = item.get("recurrence")
        attendees = item.get("attendees")

        return CalendarEvent(
            id=item["id"],
            calendar_id=item.get(CALENDAR_ID_KEY) or DEFAULT_CALENDAR_ID,
            summary=encrypt(item.get("summary") or "", key),
            description=encrypt_optional(item.get("description"), key),
            location=encrypt_optional(item.get("location"), key),
            recurrence=encrypt(json.dumps(recurrence), key) if recurrence else None,
            attendees=encrypt(json.dumps(attendees), key) if attendees else None,
            meeting_link=encrypt_optional(meeting_link_of(item), key),
            start_time=start_time,
            end_time=end_time,
            is_all_day=is_all_day,
            timezone=(item.get("start") or {}).get("timeZone"),
            is_recurring=bool(item.get("recurringEventId") or recurrence),
            reminders=reminders_of(item),
            content_strategy=ContentStrategy.INLINE.value,
            synced_at=utcnow(),
        )

    async def list_calendars(self) -> list[dict[str, Any]]:
        """List calendars on the user's calendar list."""
        if self.client is None:
            await self.open()
        calendars: list[dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {}
            if page_token:
                params["pageToken"] = page_token
            data = await self.client.get_json(f"{CALENDAR_API_BASE}/users/me/calendarList", params=params)
            for entry in data.get("items") or []:
                calendars.append(
                    {
                        "id": entry.get("id"),
                        "summary": entry.get("summary"),
                        "primary": bool(entry.get("primary")),
                        "access_role": entry.get("accessRole"),
                    }
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                return calendars
