"""In-process event bus fanning import progress out to SSE streams."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

MAX_QUEUED_EVENTS = 1000


def encode_event(event: dict[str, Any]) -> str:
    """Serialize an event as one JSON line, stamping it if unstamped."""
    stamped = dict(event)
    if not stamped.get("timestamp"):
        stamped["timestamp"] = datetime.now(timezone.utc).isoformat()
    return json.dumps(stamped, default=str)


class EventBus:
    """Broadcasts events to every subscriber's bounded queue.

    A subscriber that stops draining its queue is disconnected once the
    queue is full; publishing never waits on a consumer.
    """

    def __init__(self, max_queued: int = MAX_QUEUED_EVENTS) -> None:
        self._subscribers: set[asyncio.Queue[str]] = set()
        self._guard = asyncio.Lock()
        self._max_queued = max_queued

    @property
    def listener_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[str]:
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_queued)
        async with self._guard:
            self._subscribers.add(queue)
        logger.debug("Event subscriber added (%d total)", len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        async with self._guard:
            self._subscribers.discard(queue)

    async def publish(self, event: dict[str, Any]) -> None:
        """Deliver an event to all current subscribers."""
        if not self._subscribers:
            return

        payload = encode_event(event)
        async with self._guard:
            overflowing = set()
            for queue in self._subscribers:
                try:
                    queue.put_nowait(payload)
                except asyncio.QueueFull:
                    overflowing.add(queue)
            if overflowing:
                logger.warning("Dropping %d event subscriber(s) with full queues", len(overflowing))
                self._subscribers -= overflowing


event_bus = EventBus()

__all__ = ["event_bus", "EventBus", "encode_event"]
