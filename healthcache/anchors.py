"""Per-stream anchor (incremental read cursor) storage.

The anchor is opaque: only the health data provider knows what it means.
It must be stored only after the batch it covers has been committed to the
queue. A crash in between re-delivers that batch on the next fetch.
"""

from typing import Any

import structlog

from healthcache.domain.models import SampleStreamKind
from healthcache.state import StateStore

logger = structlog.get_logger()


class AnchorTracker:
    def __init__(self, state: StateStore):
        self._state = state

    async def load(self, stream: SampleStreamKind) -> Any | None:
        """The last stored anchor, or None to read from the beginning."""
        return await self._state.get(stream.anchor_key)

    async def store(self, stream: SampleStreamKind, anchor: Any) -> None:
        await self._state.set(stream.anchor_key, anchor)
        logger.debug("anchor_stored", stream=stream.value, anchor=anchor)
