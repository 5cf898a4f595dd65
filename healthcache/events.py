"""Notifications that samples were cached, for UI consumers.

One event per stream kind, carrying no payload beyond the stream: observers
re-read statistics when they get one. Events are always delivered on the
bus's event loop, whichever thread publishes them.
"""

import asyncio
from dataclasses import dataclass

import structlog

from healthcache.domain.models import SampleStreamKind

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheEvent:
    stream: SampleStreamKind

    @property
    def name(self) -> str:
        return f"HealthKitDataCache-observed-{self.stream.type_identifier}"


class CacheEventBus:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, max_pending: int = 100):
        self._loop = loop or asyncio.get_running_loop()
        self._max_pending = max_pending
        self._subscribers: set[asyncio.Queue[CacheEvent]] = set()

    def subscribe(self) -> asyncio.Queue[CacheEvent]:
        queue: asyncio.Queue[CacheEvent] = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[CacheEvent]) -> None:
        self._subscribers.discard(queue)

    def publish(self, stream: SampleStreamKind) -> None:
        """Schedule delivery of a CacheEvent to every subscriber. Thread-safe."""
        self._loop.call_soon_threadsafe(self._deliver, CacheEvent(stream))

    def _deliver(self, event: CacheEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Events carry no payload, so a dropped duplicate loses nothing
                logger.warning("cache_event_dropped", event=event.name)
