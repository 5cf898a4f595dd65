"""Repositories: all SQL for the cache domain.

CacheRecordRepository appends to and pages through the upload queue.
AppStateRepository is the key/value store behind authorization flags,
anchors and statistics. Neither commits; callers own the transaction.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from healthcache.domain.models import (
    CacheRecord,
    DeviceDescriptor,
    SampleAction,
    SampleStreamKind,
)
from healthcache.domain.orm import AppStateModel, CacheRecordModel


def _to_utc(value: datetime | None) -> datetime | None:
    """SQLite keeps no offset, so everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _record_to_model(record: CacheRecord) -> CacheRecordModel:
    return CacheRecordModel(
        id=record.id,
        stream_kind=record.stream_kind.value,
        action=record.action.value,
        source_name=record.source_name,
        source_bundle_identifier=record.source_bundle_identifier,
        source_version=record.source_version,
        device=record.device.model_dump(exclude_none=True) if record.device else None,
        start_date=_to_utc(record.start_date),
        end_date=_to_utc(record.end_date),
        value=record.value,
        unit=record.unit,
        serialized_payload=record.serialized_payload,
    )


def model_to_record(row: CacheRecordModel) -> CacheRecord:
    return CacheRecord(
        seq=row.seq,
        id=row.id,
        stream_kind=SampleStreamKind(row.stream_kind),
        action=SampleAction(row.action),
        source_name=row.source_name,
        source_bundle_identifier=row.source_bundle_identifier,
        source_version=row.source_version,
        device=DeviceDescriptor(**row.device) if row.device else None,
        start_date=_to_utc(row.start_date),
        end_date=_to_utc(row.end_date),
        value=row.value,
        unit=row.unit,
        serialized_payload=row.serialized_payload,
    )


class CacheRecordRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, records: list[CacheRecord]) -> list[int]:
        """Add records in order and flush. Returns the assigned seq numbers."""
        models = [_record_to_model(r) for r in records]
        for model in models:
            self.session.add(model)
            # Flush per row so seq follows list order exactly
            await self.session.flush()
        return [m.seq for m in models]

    async def read_since(
        self,
        after_seq: int = 0,
        stream: SampleStreamKind | None = None,
        action: SampleAction | None = None,
        limit: int | None = None,
    ) -> list[CacheRecord]:
        """Records with seq > after_seq, oldest first."""
        query = select(CacheRecordModel).where(CacheRecordModel.seq > after_seq)
        if stream:
            query = query.where(CacheRecordModel.stream_kind == stream.value)
        if action:
            query = query.where(CacheRecordModel.action == action.value)
        query = query.order_by(CacheRecordModel.seq.asc())
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [model_to_record(row) for row in result.scalars().all()]

    async def count(self, stream: SampleStreamKind | None = None) -> int:
        query = select(func.count()).select_from(CacheRecordModel)
        if stream:
            query = query.where(CacheRecordModel.stream_kind == stream.value)
        result = await self.session.execute(query)
        return result.scalar_one()


class AppStateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        """Values for the keys that exist. Missing keys are simply absent."""
        if not keys:
            return {}
        result = await self.session.execute(
            select(AppStateModel.key, AppStateModel.value).where(AppStateModel.key.in_(keys))
        )
        return {key: value for key, value in result.all()}

    async def set_many(self, values: dict[str, Any]) -> None:
        """Insert or overwrite each key."""
        now = datetime.now(UTC)
        for key, value in values.items():
            stmt = sqlite_insert(AppStateModel).values(key=key, value=value, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=["key"],
                set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
            )
            await self.session.execute(stmt)
