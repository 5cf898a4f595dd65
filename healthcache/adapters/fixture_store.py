"""Fixture health store: an in-memory provider with HealthKit-like semantics.

Samples and deletions are kept as one ordered change log per stream. The
anchor is the sequence number of the last change a reader has seen, so
anchored queries are repeatable and observers fire on every change.
"""

import itertools
import json
import threading
from pathlib import Path
from typing import Any

import structlog

from healthcache.adapters.protocol import AnchoredQueryResult, ObserverHandler
from healthcache.domain.models import DeletionMarker, RawSample, SampleStreamKind

logger = structlog.get_logger()


class FixtureObserverQuery:
    def __init__(self, query_id: int, stream: SampleStreamKind, handler: ObserverHandler):
        self.query_id = query_id
        self.stream = stream
        self.handler = handler


class FixtureHealthStore:
    """Fixture-mode provider: holds samples in memory, no device needed."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.authorized: set[SampleStreamKind] = set()
        self.background_delivery: set[SampleStreamKind] = set()
        self._changes: dict[SampleStreamKind, list[tuple[int, RawSample | DeletionMarker]]] = {
            stream: [] for stream in SampleStreamKind
        }
        self._observers: dict[int, FixtureObserverQuery] = {}
        self._seq = itertools.count(1)
        self._query_ids = itertools.count(1)
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path) -> "FixtureHealthStore":
        """Load samples from a JSON file keyed by stream kind."""
        store = cls()
        raw = json.loads(Path(path).read_text())
        for stream_name, samples in raw.items():
            stream = SampleStreamKind(stream_name)
            store.add_samples(stream, [RawSample.model_validate(s) for s in samples])
        logger.info("fixture_store_loaded", path=str(path))
        return store

    # --- Mutation (what a device would do) ---

    def add_samples(self, stream: SampleStreamKind, samples: list[RawSample]) -> None:
        with self._lock:
            for sample in samples:
                self._changes[stream].append((next(self._seq), sample))
        self._notify(stream)

    def delete_samples(self, stream: SampleStreamKind, uuids: list[str]) -> None:
        with self._lock:
            for uuid in uuids:
                self._changes[stream].append((next(self._seq), DeletionMarker(uuid=uuid)))
        self._notify(stream)

    def _notify(self, stream: SampleStreamKind) -> None:
        with self._lock:
            handlers = [q.handler for q in self._observers.values() if q.stream == stream]
        for handler in handlers:
            handler(None)

    # --- HealthStore protocol ---

    def is_health_data_available(self) -> bool:
        return self.available

    async def request_authorization(self, read_types: set[SampleStreamKind]) -> None:
        if not self.available:
            raise RuntimeError("Health data is not available on this device")
        self.authorized |= read_types

    def execute_observer_query(
        self, stream: SampleStreamKind, handler: ObserverHandler
    ) -> FixtureObserverQuery:
        query = FixtureObserverQuery(next(self._query_ids), stream, handler)
        with self._lock:
            self._observers[query.query_id] = query
        # Like HealthKit, a new observer fires once straight away
        handler(None)
        return query

    def stop_query(self, query: object) -> None:
        if isinstance(query, FixtureObserverQuery):
            with self._lock:
                self._observers.pop(query.query_id, None)

    def observer_count(self, stream: SampleStreamKind) -> int:
        with self._lock:
            return sum(1 for q in self._observers.values() if q.stream == stream)

    async def enable_background_delivery(self, stream: SampleStreamKind) -> None:
        self.background_delivery.add(stream)

    async def disable_background_delivery(self, stream: SampleStreamKind) -> None:
        self.background_delivery.discard(stream)

    async def execute_anchored_query(
        self, stream: SampleStreamKind, anchor: Any | None
    ) -> AnchoredQueryResult:
        since = int(anchor or 0)
        with self._lock:
            changes = [(seq, c) for seq, c in self._changes[stream] if seq > since]
        result = AnchoredQueryResult(new_anchor=changes[-1][0] if changes else since)
        for _, change in changes:
            if isinstance(change, DeletionMarker):
                result.deleted_objects.append(change)
            else:
                result.samples.append(change)
        return result
