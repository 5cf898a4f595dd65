"""FastAPI router for the health sample cache.

Endpoints:
- GET  /api/v1/cache/statistics
- GET  /api/v1/cache/streams
- POST /api/v1/cache/streams/{stream}/start
- POST /api/v1/cache/streams/{stream}/stop
- GET  /api/v1/cache/records  (upload drain, cursor pagination on seq)
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response

from healthcache.domain.models import CacheRecord, SampleAction, SampleStreamKind
from healthcache.pipeline import HealthDataCache
from shared.config import settings
from shared.exceptions import (
    CacheUnavailableError,
    InvalidCursorError,
    UnsupportedActionError,
    UnsupportedStreamError,
)
from shared.metrics import api_requests_total, api_response_duration_seconds
from shared.middleware import request_id_var

router = APIRouter(prefix="/api/v1/cache")


# --- Dependencies ---


def get_cache(request: Request) -> HealthDataCache:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise CacheUnavailableError()
    return cache


# --- Helpers ---


def _meta() -> dict[str, Any]:
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": settings.api_version,
    }


def _parse_stream(stream: str) -> SampleStreamKind:
    try:
        return SampleStreamKind(stream)
    except ValueError:
        raise UnsupportedStreamError(stream) from None


def _parse_action(action: str) -> SampleAction:
    try:
        return SampleAction(action)
    except ValueError:
        raise UnsupportedActionError(action) from None


def encode_cursor(seq: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"seq": seq}).encode()).decode()


def decode_cursor(cursor: str) -> int:
    try:
        decoded = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return int(decoded["seq"])
    except (binascii.Error, ValueError, KeyError, TypeError):
        raise InvalidCursorError(cursor) from None


def _record_to_dict(record: CacheRecord) -> dict[str, Any]:
    return {
        "seq": record.seq,
        "id": record.id,
        "stream": record.stream_kind.value,
        "action": record.action.value,
        "source": {
            "name": record.source_name,
            "bundle_identifier": record.source_bundle_identifier,
            "version": record.source_version,
        },
        "device": record.device.model_dump(exclude_none=True) if record.device else None,
        "start_date": record.start_date.isoformat() if record.start_date else None,
        "end_date": record.end_date.isoformat() if record.end_date else None,
        "value": record.value,
        "unit": record.unit,
        "payload": json.loads(record.serialized_payload) if record.serialized_payload else None,
    }


async def _stream_status(cache: HealthDataCache, stream: SampleStreamKind) -> dict[str, Any]:
    stats = cache.statistics.stream(stream)
    return {
        "stream": stream.value,
        "state": cache.state(stream).value,
        "observing": cache.source.is_observing(stream),
        "background_delivery": cache.source.is_background_delivery_enabled(stream),
        "authorization_requested": await cache.source.authorization_requested(stream),
        "last_cache_count": stats.last_cache_count,
        "last_cache_time": stats.last_cache_time.isoformat() if stats.last_cache_time else None,
        "total_cache_count": stats.total_cache_count,
    }


# --- Endpoints ---


@router.get("/statistics")
async def get_statistics(cache: HealthDataCache = Depends(get_cache)):
    """Aggregate cache statistics across streams, plus the per-stream breakdown."""
    start_time = time.monotonic()
    stats = cache.statistics
    last_time = stats.last_cache_time
    data = {
        "total_cache_count": stats.total_cache_count,
        "last_cache_count": stats.last_cache_count,
        "last_cache_time": last_time.isoformat() if last_time else None,
        "streams": {
            stream.value: {
                "last_cache_count": stats.stream(stream).last_cache_count,
                "last_cache_time": (
                    stats.stream(stream).last_cache_time.isoformat()
                    if stats.stream(stream).last_cache_time
                    else None
                ),
                "total_cache_count": stats.stream(stream).total_cache_count,
            }
            for stream in SampleStreamKind
        },
    }

    api_requests_total.labels(endpoint="statistics", method="GET", status_code="200").inc()
    api_response_duration_seconds.labels(endpoint="statistics").observe(
        time.monotonic() - start_time
    )
    return {"data": data, "meta": _meta()}


@router.get("/streams")
async def list_streams(cache: HealthDataCache = Depends(get_cache)):
    data = [await _stream_status(cache, stream) for stream in SampleStreamKind]
    api_requests_total.labels(endpoint="streams", method="GET", status_code="200").inc()
    return {"data": data, "meta": _meta()}


@router.post("/streams/{stream}/start")
async def start_stream(stream: str, cache: HealthDataCache = Depends(get_cache)):
    """Authorize (if needed) and start caching one stream.

    Authorization failures are not HTTP errors: the stream simply stays Idle.
    """
    kind = _parse_stream(stream)
    await cache.authorize_and_start_caching({kind})
    api_requests_total.labels(endpoint="start", method="POST", status_code="200").inc()
    return {"data": await _stream_status(cache, kind), "meta": _meta()}


@router.post("/streams/{stream}/stop")
async def stop_stream(stream: str, cache: HealthDataCache = Depends(get_cache)):
    kind = _parse_stream(stream)
    await cache.stop_caching({kind})
    api_requests_total.labels(endpoint="stop", method="POST", status_code="200").inc()
    return {"data": await _stream_status(cache, kind), "meta": _meta()}


@router.get("/records")
async def list_records(
    response: Response,
    cache: HealthDataCache = Depends(get_cache),
    stream: str | None = Query(None),
    action: str | None = Query(None),
    limit: int = Query(settings.default_page_limit, ge=1, le=settings.max_page_limit),
    cursor: str | None = Query(None),
):
    """Queued records oldest first, for the upload drain."""
    start_time = time.monotonic()
    kind = _parse_stream(stream) if stream else None
    sample_action = _parse_action(action) if action else None
    after_seq = decode_cursor(cursor) if cursor else 0

    # Fetch limit+1 to determine has_more
    records = await cache.queue_store.read_since(
        after_seq=after_seq, stream=kind, action=sample_action, limit=limit + 1
    )
    has_more = len(records) > limit
    if has_more:
        records = records[:limit]

    next_cursor = encode_cursor(records[-1].seq) if has_more and records else None
    pagination = {
        "next_cursor": next_cursor,
        "has_more": next_cursor is not None,
        "limit": limit,
    }

    # Link header (RFC 8288)
    if next_cursor:
        response.headers["Link"] = f'</api/v1/cache/records?cursor={next_cursor}>; rel="next"'

    api_requests_total.labels(endpoint="records", method="GET", status_code="200").inc()
    api_response_duration_seconds.labels(endpoint="records").observe(time.monotonic() - start_time)

    return {
        "data": [_record_to_dict(r) for r in records],
        "meta": _meta(),
        "pagination": pagination,
    }
