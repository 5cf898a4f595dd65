"""SQLAlchemy ORM models for the embedded store.

Tables:
- cache_records: append-only upload queue (one row per CacheRecord)
- app_state: key/value settings (authorization flags, anchors, statistics)
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CacheRecordModel(Base):
    __tablename__ = "cache_records"

    # Insertion order; the drain pages on this
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (not unique: see CacheRecord)
    id: Mapped[str] = mapped_column(String(64), nullable=False)
    stream_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)

    # Provenance
    source_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_bundle_identifier: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_version: Mapped[str] = mapped_column(Text, nullable=False, default="")
    device: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Temporal
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Payload
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    serialized_payload: Mapped[str] = mapped_column(Text, nullable=False, default="")

    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_cache_records_id_action", "id", "action"),
        Index("idx_cache_records_stream_seq", "stream_kind", "seq"),
    )


class AppStateModel(Base):
    __tablename__ = "app_state"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
