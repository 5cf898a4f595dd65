"""Durable key/value state shared by the source adapter, anchors and statistics.

Each caller owns a disjoint slice of the keyspace (one stream's anchor,
one stream's counters), so no cross-stream locking is needed.
"""

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthcache.repository import AppStateRepository
from shared.database import retry_on_lock_contention
from shared.exceptions import PersistenceError

logger = structlog.get_logger()


class StateStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str, default: Any = None) -> Any:
        values = await self.get_many([key])
        return values.get(key, default)

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        try:
            async with self._session_factory() as session:
                return await AppStateRepository(session).get_many(keys)
        except SQLAlchemyError as exc:
            logger.error("state_read_failed", keys=sorted(keys), error=str(exc))
            raise PersistenceError(f"Failed to read {', '.join(sorted(keys))}") from exc

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: dict[str, Any]) -> None:
        """Write all values in one transaction, or none of them."""
        try:
            await self._write(values)
        except SQLAlchemyError as exc:
            logger.error("state_write_failed", keys=sorted(values), error=str(exc))
            raise PersistenceError(f"Failed to persist {', '.join(sorted(values))}") from exc

    @retry_on_lock_contention
    async def _write(self, values: dict[str, Any]) -> None:
        async with self._session_factory() as session, session.begin():
            await AppStateRepository(session).set_many(values)
