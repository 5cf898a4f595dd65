"""Sample source adapter: the cache's bridge to the health data provider.

Wraps authorization, observer registration, background delivery and
anchored incremental reads for each stream. It reads the stored anchor but
never advances it: the pipeline stores the next anchor only after the batch
has been committed.

Observation and background delivery are tracked per stream so repeated
start/enable calls are cheap no-ops.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from healthcache.adapters.protocol import HealthStore
from healthcache.anchors import AnchorTracker
from healthcache.domain.models import DeletionMarker, RawSample, SampleStreamKind
from healthcache.state import StateStore
from shared.exceptions import AuthorizationError, ProviderQueryError
from shared.metrics import provider_query_duration_seconds

logger = structlog.get_logger()

ChangeCallback = Callable[[ProviderQueryError | None], None]


@dataclass
class FetchResult:
    new_samples: list[RawSample] = field(default_factory=list)
    deleted_samples: list[DeletionMarker] = field(default_factory=list)
    next_anchor: Any = None

    @property
    def is_empty(self) -> bool:
        return not self.new_samples and not self.deleted_samples


def authorization_requested_key(stream: SampleStreamKind) -> str:
    return f"authorizationRequestedFor{stream.state_suffix}"


class SampleSourceAdapter:
    def __init__(self, store: HealthStore, anchors: AnchorTracker, state: StateStore) -> None:
        self._store = store
        self._anchors = anchors
        self._state = state
        self._observer_queries: dict[SampleStreamKind, object] = {}
        self._observation_successful: dict[SampleStreamKind, bool] = {
            stream: False for stream in SampleStreamKind
        }
        self._background_delivery_enabled: dict[SampleStreamKind, bool] = {
            stream: False for stream in SampleStreamKind
        }

    @property
    def is_health_data_available(self) -> bool:
        return self._store.is_health_data_available()

    def _warn_unavailable(self, operation: str) -> bool:
        if self.is_health_data_available:
            return False
        logger.warning("health_data_unavailable", operation=operation)
        return True

    # --- Authorization ---

    async def authorize(self, streams: set[SampleStreamKind]) -> bool:
        """Request read access for streams.

        An empty set is a no-op success. Once the provider has answered,
        the per-stream "authorization requested" flag is persisted, even if
        the answer was an error.
        """
        if not self.is_health_data_available:
            raise AuthorizationError("Health data is not available on this device")
        if not streams:
            logger.info("authorization_skipped", reason="no_streams_requested")
            return True

        error: Exception | None = None
        try:
            await self._store.request_authorization(set(streams))
        except Exception as exc:
            error = exc

        await self._state.set_many({authorization_requested_key(s): True for s in streams})

        if error is not None:
            logger.error(
                "authorization_failed",
                streams=sorted(s.value for s in streams),
                error=str(error),
            )
            raise AuthorizationError(f"Authorization request failed: {error}") from error

        logger.info("authorization_requested", streams=sorted(s.value for s in streams))
        return True

    async def authorization_requested(self, stream: SampleStreamKind) -> bool:
        """Distinguishes "never asked" from "asked, answer unknown or denied"."""
        return bool(await self._state.get(authorization_requested_key(stream), False))

    # --- Observation ---

    def is_observing(self, stream: SampleStreamKind) -> bool:
        return self._observation_successful[stream]

    def start_observing(self, stream: SampleStreamKind, on_change: ChangeCallback) -> None:
        """Register an observer that calls on_change on every provider signal.

        on_change may run on any thread. A registration that has not yet
        delivered a successful callback is torn down and replaced.
        """
        if self._warn_unavailable("start_observing"):
            return
        if self._observation_successful[stream]:
            return

        previous = self._observer_queries.pop(stream, None)
        if previous is not None:
            self._store.stop_query(previous)

        def handler(error: Exception | None) -> None:
            if error is None:
                self._observation_successful[stream] = True
                on_change(None)
                return
            logger.error("observer_query_failed", stream=stream.value, error=str(error))
            on_change(ProviderQueryError(f"Observer query failed for {stream.value}: {error}"))

        self._observer_queries[stream] = self._store.execute_observer_query(stream, handler)
        logger.info("observer_registered", stream=stream.value)

    def stop_observing(self, stream: SampleStreamKind) -> None:
        if self._warn_unavailable("stop_observing"):
            return
        query = self._observer_queries.pop(stream, None)
        if query is not None:
            self._store.stop_query(query)
            logger.info("observer_stopped", stream=stream.value)
        self._observation_successful[stream] = False

    # --- Background delivery ---

    def is_background_delivery_enabled(self, stream: SampleStreamKind) -> bool:
        return self._background_delivery_enabled[stream]

    async def enable_background_delivery(self, stream: SampleStreamKind) -> None:
        if self._warn_unavailable("enable_background_delivery"):
            return
        if self._background_delivery_enabled[stream]:
            return
        try:
            await self._store.enable_background_delivery(stream)
        except Exception as exc:
            logger.error("background_delivery_enable_failed", stream=stream.value, error=str(exc))
            return
        self._background_delivery_enabled[stream] = True
        logger.info("background_delivery_enabled", stream=stream.value)

    async def disable_background_delivery(self, stream: SampleStreamKind) -> None:
        if self._warn_unavailable("disable_background_delivery"):
            return
        if not self._background_delivery_enabled[stream]:
            return
        try:
            await self._store.disable_background_delivery(stream)
        except Exception as exc:
            logger.error("background_delivery_disable_failed", stream=stream.value, error=str(exc))
            return
        self._background_delivery_enabled[stream] = False
        logger.info("background_delivery_disabled", stream=stream.value)

    # --- Incremental reads ---

    async def fetch_incremental(self, stream: SampleStreamKind) -> FetchResult:
        """One anchored read from the last stored anchor. Does not store the new one."""
        anchor = await self._anchors.load(stream)
        start = time.monotonic()
        try:
            result = await self._store.execute_anchored_query(stream, anchor)
        except Exception as exc:
            logger.error("anchored_query_failed", stream=stream.value, error=str(exc))
            raise ProviderQueryError(f"Anchored query failed for {stream.value}: {exc}") from exc
        finally:
            provider_query_duration_seconds.labels(stream=stream.value).observe(
                time.monotonic() - start
            )

        logger.info(
            "anchored_query_completed",
            stream=stream.value,
            new=len(result.samples),
            deleted=len(result.deleted_objects),
        )
        return FetchResult(
            new_samples=list(result.samples),
            deleted_samples=list(result.deleted_objects),
            next_anchor=result.new_anchor,
        )
