"""Server-sent events stream of import progress."""

import asyncio
import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from localvault.categories import DataCategory
from localvault.dependencies import get_vault_service
from localvault.services.vault_service import VaultService

router = APIRouter(prefix="/events", tags=["events"])

HEARTBEAT_SECONDS = 15


def format_sse(message: str, category: DataCategory | None = None) -> str | None:
    """Frame a bus message as an SSE record named after its type.

    Returns None when a category filter is set and the message belongs to
    another category.
    """
    event = json.loads(message)
    if category is not None and event.get("category") not in (None, category.value):
        return None
    return f"event: {event.get('type', 'message')}\ndata: {message}\n\n"


@router.get("/stream")
async def stream_events(
    request: Request,
    category: DataCategory | None = None,
    vault: VaultService = Depends(get_vault_service),
) -> StreamingResponse:
    """Stream progress snapshots, optionally for a single category."""
    bus = vault.events

    async def event_generator() -> AsyncGenerator[str]:
        queue = await bus.subscribe()
        try:
            yield 'event: connected\ndata: {"type":"connected"}\n\n'
            while not await request.is_disconnected():
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except TimeoutError:
                    yield "event: ping\ndata: {}\n\n"
                    continue
                record = format_sse(message, category)
                if record is not None:
                    yield record
        finally:
            await bus.unsubscribe(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")
