"""Caching pipeline: provider change signal → fetch → map → append → anchor → statistics.

HealthDataCache is the single owner of the cache components. It builds them
in dependency order, runs one worker task per stream and tears everything
down in reverse on close().

Per stream, a batch always runs in this order:
1. Anchored fetch since the stored anchor
2. Map samples to records (rejected and unserializable samples are dropped)
3. Append all records in one transaction
4. Store the next anchor
5. Record statistics and publish a CacheEvent

A fetch or append failure aborts the batch before step 4, so the next signal
re-reads the same window. Delivery is at-least-once: the drain must tolerate
duplicate (id, action) records.

Change signals arrive over a one-slot channel: a signal that arrives while a
batch is running is held (once) and triggers exactly one follow-up batch, so
two anchored reads for the same stream never overlap. Streams are independent.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import StrEnum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthcache.adapters.protocol import HealthStore
from healthcache.adapters.sample_mapper import SampleMapper
from healthcache.adapters.source import SampleSourceAdapter
from healthcache.anchors import AnchorTracker
from healthcache.domain.models import CacheRecord, SampleAction, SampleStreamKind
from healthcache.events import CacheEventBus
from healthcache.queue_store import SampleQueueStore
from healthcache.state import StateStore
from healthcache.statistics import CacheStatistics
from shared.exceptions import (
    HealthCacheError,
    PersistenceError,
    ProviderQueryError,
    SerializationError,
)
from shared.metrics import (
    batch_duration_seconds,
    batch_failures_total,
    cached_records_total,
    rejected_samples_total,
)

logger = structlog.get_logger()

_STOP = object()


class StreamState(StrEnum):
    IDLE = "Idle"
    AUTHORIZING = "Authorizing"
    OBSERVING = "Observing"
    FETCHING = "Fetching"


@dataclass
class BatchResult:
    """Outcome of one cache batch for one stream."""

    stream: SampleStreamKind
    added_count: int = 0
    deleted_count: int = 0
    rejected_count: int = 0
    unserializable_count: int = 0
    committed: bool = False
    anchor_advanced: bool = False
    failed_stage: str | None = None  # "fetch", "append", "anchor", "statistics"

    @property
    def cached_count(self) -> int:
        return self.added_count + self.deleted_count


class _StreamWorker:
    """Runs batches for one stream, one at a time, as change signals arrive."""

    def __init__(self, stream: SampleStreamKind, cache: "HealthDataCache") -> None:
        self.stream = stream
        self._cache = cache
        self._signals: asyncio.Queue[object] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task | None = None
        self.active = False

    def start(self) -> None:
        self.active = True
        self._task = asyncio.create_task(self._run(), name=f"healthcache-{self.stream.value}")

    def signal(self) -> None:
        if not self.active:
            return
        try:
            self._signals.put_nowait(None)
        except asyncio.QueueFull:
            pass  # a batch is already pending and will see this change too

    async def stop(self) -> None:
        """Let an in-flight batch finish, then exit without fetching again."""
        self.active = False
        try:
            self._signals.put_nowait(_STOP)
        except asyncio.QueueFull:
            pass  # the pending signal wakes the worker, which sees active=False
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            item = await self._signals.get()
            if item is _STOP or not self.active:
                return
            try:
                await self._cache.cache_batch(self.stream)
            except Exception:
                # Keep the worker alive; the next signal retries from the same anchor
                logger.exception("cache_batch_crashed", stream=self.stream.value)


class HealthDataCache:
    def __init__(
        self,
        source: SampleSourceAdapter,
        mapper: SampleMapper,
        queue_store: SampleQueueStore,
        anchors: AnchorTracker,
        statistics: CacheStatistics,
        events: CacheEventBus,
    ) -> None:
        self.source = source
        self.mapper = mapper
        self.queue_store = queue_store
        self.anchors = anchors
        self.statistics = statistics
        self.events = events
        self._loop = asyncio.get_running_loop()
        self._states = {stream: StreamState.IDLE for stream in SampleStreamKind}
        self._workers: dict[SampleStreamKind, _StreamWorker] = {}
        self._batch_locks = {stream: asyncio.Lock() for stream in SampleStreamKind}

    @classmethod
    async def build(
        cls,
        store: HealthStore,
        session_factory: async_sessionmaker[AsyncSession],
        glucose_source_allowlist: list[str] | None = None,
        window_seconds: float | None = None,
    ) -> "HealthDataCache":
        """Construct every component over one store and restore statistics."""
        state = StateStore(session_factory)
        anchors = AnchorTracker(state)
        events = CacheEventBus()
        statistics = CacheStatistics(state, events, window_seconds=window_seconds)
        await statistics.load()
        return cls(
            source=SampleSourceAdapter(store, anchors, state),
            mapper=SampleMapper(glucose_source_allowlist),
            queue_store=SampleQueueStore(session_factory),
            anchors=anchors,
            statistics=statistics,
            events=events,
        )

    def state(self, stream: SampleStreamKind) -> StreamState:
        return self._states[stream]

    # --- Lifecycle ---

    async def authorize_and_start_caching(
        self, streams: set[SampleStreamKind]
    ) -> dict[SampleStreamKind, StreamState]:
        """Authorize and start each stream independently.

        An authorization failure leaves only that stream Idle.
        """
        for stream in sorted(streams):
            if self._states[stream] != StreamState.IDLE:
                continue
            self._states[stream] = StreamState.AUTHORIZING
            try:
                await self.source.authorize({stream})
            except HealthCacheError as exc:
                self._states[stream] = StreamState.IDLE
                logger.error("start_caching_aborted", stream=stream.value, error=str(exc))
                continue
            self._states[stream] = StreamState.IDLE
            await self.start_caching({stream})
        return {stream: self._states[stream] for stream in streams}

    async def start_caching(self, streams: set[SampleStreamKind]) -> None:
        if not self.source.is_health_data_available:
            logger.warning("start_caching_skipped", reason="health_data_unavailable")
            return
        for stream in sorted(streams):
            if stream in self._workers:
                continue
            worker = _StreamWorker(stream, self)
            self._workers[stream] = worker
            worker.start()
            self._states[stream] = StreamState.OBSERVING
            self.source.start_observing(stream, self._change_callback(stream))
            await self.source.enable_background_delivery(stream)
            logger.info("caching_started", stream=stream.value)

    async def stop_caching(self, streams: set[SampleStreamKind]) -> None:
        for stream in sorted(streams):
            worker = self._workers.pop(stream, None)
            self.source.stop_observing(stream)
            await self.source.disable_background_delivery(stream)
            self._states[stream] = StreamState.IDLE
            if worker is not None:
                await worker.stop()
                logger.info("caching_stopped", stream=stream.value)

    async def close(self) -> None:
        await self.stop_caching(set(SampleStreamKind))

    def _change_callback(self, stream: SampleStreamKind):
        def on_change(error: ProviderQueryError | None) -> None:
            # Providers call back on arbitrary threads
            self._loop.call_soon_threadsafe(self._on_change, stream, error)

        return on_change

    def _on_change(self, stream: SampleStreamKind, error: ProviderQueryError | None) -> None:
        if error is not None:
            batch_failures_total.labels(stream=stream.value, stage="observe").inc()
            logger.error("change_signal_failed", stream=stream.value, error=str(error))
            return
        worker = self._workers.get(stream)
        if worker is not None:
            worker.signal()

    # --- Batches ---

    async def cache_batch(self, stream: SampleStreamKind) -> BatchResult:
        """Run one fetch-map-append-anchor-statistics batch for stream."""
        async with self._batch_locks[stream]:
            start = time.monotonic()
            if self._states[stream] == StreamState.OBSERVING:
                self._states[stream] = StreamState.FETCHING
            try:
                return await self._run_batch(stream)
            finally:
                # stop_caching during the batch already moved the stream to Idle
                if self._states[stream] == StreamState.FETCHING:
                    self._states[stream] = StreamState.OBSERVING
                batch_duration_seconds.labels(stream=stream.value).observe(
                    time.monotonic() - start
                )

    def _fail(self, result: BatchResult, stage: str, exc: Exception) -> BatchResult:
        result.failed_stage = stage
        batch_failures_total.labels(stream=result.stream.value, stage=stage).inc()
        logger.error(
            "cache_batch_failed",
            stream=result.stream.value,
            stage=stage,
            error=str(exc),
        )
        return result

    async def _run_batch(self, stream: SampleStreamKind) -> BatchResult:
        result = BatchResult(stream=stream)

        try:
            fetched = await self.source.fetch_incremental(stream)
        except HealthCacheError as exc:
            return self._fail(result, "fetch", exc)

        if fetched.new_samples:
            logger.info(
                "processing_new_samples", stream=stream.value, count=len(fetched.new_samples)
            )
        if fetched.deleted_samples:
            logger.info(
                "processing_deleted_samples",
                stream=stream.value,
                count=len(fetched.deleted_samples),
            )

        records = self._map_records(stream, fetched.new_samples, result)
        records.extend(self.mapper.to_deleted_record(stream, m) for m in fetched.deleted_samples)

        try:
            await self.queue_store.append_batch(records)
        except PersistenceError as exc:
            return self._fail(result, "append", exc)
        result.committed = True
        result.added_count = sum(1 for r in records if r.action == SampleAction.ADDED)
        result.deleted_count = len(records) - result.added_count
        cached_records_total.labels(stream=stream.value, action="Added").inc(result.added_count)
        cached_records_total.labels(stream=stream.value, action="Deleted").inc(
            result.deleted_count
        )

        if fetched.next_anchor is not None:
            try:
                await self.anchors.store(stream, fetched.next_anchor)
                result.anchor_advanced = True
            except PersistenceError as exc:
                # Records are durable; the next fetch re-delivers them
                self._fail(result, "anchor", exc)

        try:
            await self.statistics.record_batch(stream, result.added_count, result.deleted_count)
        except PersistenceError as exc:
            self._fail(result, "statistics", exc)

        logger.info(
            "cache_batch_completed",
            stream=stream.value,
            added=result.added_count,
            deleted=result.deleted_count,
            rejected=result.rejected_count,
            unserializable=result.unserializable_count,
        )
        return result

    def _map_records(self, stream, samples, result: BatchResult) -> list[CacheRecord]:
        records: list[CacheRecord] = []
        for sample in samples:
            try:
                record = self.mapper.to_added_record(stream, sample)
            except SerializationError as exc:
                result.unserializable_count += 1
                rejected_samples_total.labels(
                    stream=stream.value, reason="serialization_error"
                ).inc()
                logger.warning(
                    "sample_dropped_unserializable",
                    stream=stream.value,
                    sample_id=exc.sample_id,
                    reason=exc.reason,
                )
                continue
            if record is None:
                result.rejected_count += 1
                rejected_samples_total.labels(
                    stream=stream.value, reason="source_not_allowed"
                ).inc()
                continue
            records.append(record)
        return records
