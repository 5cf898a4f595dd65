"""Durable upload queue: transactional, append-only persistence of CacheRecords.

append_batch is all-or-nothing. A batch either lands completely, in
insertion order, or the transaction is rolled back and PersistenceError is
raised so the caller keeps its anchor where it was.

Reads are for the upload drain. Writers hold an exclusive lock for the
whole transaction so a reader never sees half of a batch.
"""

import asyncio

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthcache.domain.models import CacheRecord, SampleAction, SampleStreamKind
from healthcache.repository import CacheRecordRepository
from shared.database import retry_on_lock_contention
from shared.exceptions import PersistenceError

logger = structlog.get_logger()


class SampleQueueStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    async def append_batch(self, records: list[CacheRecord]) -> list[int]:
        """Append every record in one transaction. Returns the assigned seq numbers."""
        if not records:
            return []

        async with self._write_lock:
            try:
                seqs = await self._append(records)
            except SQLAlchemyError as exc:
                logger.error("queue_append_failed", count=len(records), error=str(exc))
                raise PersistenceError(f"Failed to append batch of {len(records)}") from exc

        logger.info("queue_batch_committed", count=len(records), first_seq=seqs[0])
        return seqs

    @retry_on_lock_contention
    async def _append(self, records: list[CacheRecord]) -> list[int]:
        async with self._session_factory() as session, session.begin():
            return await CacheRecordRepository(session).append(records)

    async def read_all(self) -> list[CacheRecord]:
        return await self.read_since(0)

    async def read_since(
        self,
        after_seq: int = 0,
        stream: SampleStreamKind | None = None,
        action: SampleAction | None = None,
        limit: int | None = None,
    ) -> list[CacheRecord]:
        try:
            async with self._session_factory() as session:
                return await CacheRecordRepository(session).read_since(
                    after_seq=after_seq, stream=stream, action=action, limit=limit
                )
        except SQLAlchemyError as exc:
            logger.error("queue_read_failed", after_seq=after_seq, error=str(exc))
            raise PersistenceError("Failed to read the upload queue") from exc

    async def count(self, stream: SampleStreamKind | None = None) -> int:
        try:
            async with self._session_factory() as session:
                return await CacheRecordRepository(session).count(stream)
        except SQLAlchemyError as exc:
            logger.error("queue_count_failed", error=str(exc))
            raise PersistenceError("Failed to count the upload queue") from exc
