"""Cache statistics for UI display.

Per stream we keep the size and time of the most recent batch and a
lifetime total, persisted under lastCacheCount<Stream>Samples,
lastCacheTime<Stream>Samples and totalCacheCount<Stream>Samples.

Aggregation across streams treats batches that landed within a short
window of the newest one as a single logical cache event:
- last_cache_time: the newest batch time over all streams
- last_cache_count: sum of batch counts within the window of that time
- total_cache_count: sum of lifetime totals
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from healthcache.domain.models import SampleStreamKind
from healthcache.events import CacheEventBus
from healthcache.state import StateStore
from shared.config import settings

logger = structlog.get_logger()


@dataclass
class StreamStatistics:
    last_cache_count: int = 0
    last_cache_time: datetime | None = None
    total_cache_count: int = 0


def _keys(stream: SampleStreamKind) -> tuple[str, str, str]:
    suffix = stream.state_suffix
    return (
        f"lastCacheTime{suffix}",
        f"lastCacheCount{suffix}",
        f"totalCacheCount{suffix}",
    )


class CacheStatistics:
    def __init__(
        self,
        state: StateStore,
        events: CacheEventBus,
        window_seconds: float | None = None,
    ):
        self._state = state
        self._events = events
        self._window_seconds = (
            settings.last_cache_window_seconds if window_seconds is None else window_seconds
        )
        self._streams = {stream: StreamStatistics() for stream in SampleStreamKind}

    async def load(self) -> None:
        """Restore persisted counters, e.g. after a process restart."""
        for stream in SampleStreamKind:
            time_key, count_key, total_key = _keys(stream)
            values = await self._state.get_many([time_key, count_key, total_key])
            if values.get(time_key) is None:
                continue
            self._streams[stream] = StreamStatistics(
                last_cache_count=int(values.get(count_key) or 0),
                last_cache_time=datetime.fromisoformat(values[time_key]),
                total_cache_count=int(values.get(total_key) or 0),
            )

    async def record_batch(
        self,
        stream: SampleStreamKind,
        added_count: int,
        deleted_count: int,
        now: datetime | None = None,
    ) -> None:
        """Account for one committed batch and notify observers.

        Empty batches are ignored. Counters are only updated in memory once
        they have been persisted.
        """
        count = added_count + deleted_count
        if count <= 0:
            return

        current = self._streams[stream]
        updated = StreamStatistics(
            last_cache_count=count,
            last_cache_time=now or datetime.now(UTC),
            total_cache_count=current.total_cache_count + count,
        )
        time_key, count_key, total_key = _keys(stream)
        await self._state.set_many(
            {
                time_key: updated.last_cache_time.isoformat(),
                count_key: updated.last_cache_count,
                total_key: updated.total_cache_count,
            }
        )
        self._streams[stream] = updated

        logger.info(
            "cache_statistics_updated",
            stream=stream.value,
            added=added_count,
            deleted=deleted_count,
            total=updated.total_cache_count,
        )
        self._events.publish(stream)

    def stream(self, stream: SampleStreamKind) -> StreamStatistics:
        return self._streams[stream]

    @property
    def total_cache_count(self) -> int:
        return sum(s.total_cache_count for s in self._streams.values())

    @property
    def last_cache_time(self) -> datetime | None:
        times = [
            s.last_cache_time
            for s in self._streams.values()
            if s.last_cache_count > 0 and s.last_cache_time is not None
        ]
        return max(times) if times else None

    @property
    def last_cache_count(self) -> int:
        latest = self.last_cache_time
        if latest is None:
            return 0
        return sum(
            s.last_cache_count
            for s in self._streams.values()
            if s.last_cache_count > 0
            and s.last_cache_time is not None
            and abs((s.last_cache_time - latest).total_seconds()) < self._window_seconds
        )
