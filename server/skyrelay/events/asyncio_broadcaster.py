"""In-process asyncio fan-out implementation of EventNotifier."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from skyrelay.core.models import Event

log = structlog.get_logger()


class AsyncioEventBroadcaster:
    """EventNotifier that copies every event into each subscriber's queue.

    Subscriber queues are bounded. When one is full the event is dropped for
    that subscriber only; emit() never blocks on a slow consumer.
    """

    def __init__(self, queue_size: int = 1_000) -> None:
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[Event]] = []
        self.dropped: int = 0

    def subscribe(self) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def emit(self, event: Event) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                log.warning("event_dropped", event_name=event.name,
                            queue_size=self._queue_size)


async def run_event_logger(broadcaster: AsyncioEventBroadcaster) -> None:
    """Log every broadcast event. Runs as a background task."""
    queue = broadcaster.subscribe()
    log.info("event_logger_started")
    try:
        while True:
            event = await queue.get()
            log.info("event_emitted", event_name=event.name,
                     emitted_at=event.emitted_at)
    finally:
        broadcaster.unsubscribe(queue)
