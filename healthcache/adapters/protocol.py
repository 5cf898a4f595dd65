"""Health data provider protocol.

The platform health database (HealthKit on device, a fixture store in
development and tests) implements this interface. The cache depends only on
the protocol, never on a concrete provider.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from healthcache.domain.models import DeletionMarker, RawSample, SampleStreamKind

# Called with None when the provider signals new or deleted samples, or with
# the provider's error. May be invoked on any thread.
ObserverHandler = Callable[[Exception | None], None]


@dataclass
class AnchoredQueryResult:
    samples: list[RawSample] = field(default_factory=list)
    deleted_objects: list[DeletionMarker] = field(default_factory=list)
    new_anchor: Any = None


@runtime_checkable
class HealthStore(Protocol):
    """Primitives the cache consumes from the health data provider."""

    def is_health_data_available(self) -> bool: ...

    async def request_authorization(self, read_types: set[SampleStreamKind]) -> None:
        """Ask the user for read access. Raises if the request itself fails."""
        ...

    def execute_observer_query(
        self, stream: SampleStreamKind, handler: ObserverHandler
    ) -> object:
        """Start a long-lived observer query. Returns a handle for stop_query."""
        ...

    def stop_query(self, query: object) -> None: ...

    async def enable_background_delivery(self, stream: SampleStreamKind) -> None: ...

    async def disable_background_delivery(self, stream: SampleStreamKind) -> None: ...

    async def execute_anchored_query(
        self, stream: SampleStreamKind, anchor: Any | None
    ) -> AnchoredQueryResult:
        """Everything added or deleted since anchor (None = since the beginning).

        Reading does not move any cursor: the same anchor yields the same result.
        """
        ...
