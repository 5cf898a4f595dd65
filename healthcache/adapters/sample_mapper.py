"""Raw provider sample → CacheRecord mapper.

Inbound anti-corruption layer: copies source and device provenance, converts
quantities to the stream's canonical unit and attaches the Open mHealth
payload.

Filter policy: blood glucose is only accepted from allow-listed vendors,
matched as a case-insensitive substring of the source name. Rejected
samples are skipped, not errors. Workouts are accepted from any source.
"""

import structlog
from pydantic import ValidationError

from healthcache.adapters.omh_serializer import glucose_mg_per_dl, serialize_sample
from healthcache.domain.models import (
    CacheRecord,
    DeletionMarker,
    RawSample,
    SampleAction,
    SampleStreamKind,
)
from shared.config import settings
from shared.exceptions import SerializationError

logger = structlog.get_logger()


class SampleMapper:
    def __init__(self, glucose_source_allowlist: list[str] | None = None) -> None:
        allowlist = glucose_source_allowlist or settings.glucose_source_allowlist
        self._glucose_vendors = [vendor.lower() for vendor in allowlist]

    def accepts(self, stream: SampleStreamKind, sample: RawSample) -> bool:
        if stream != SampleStreamKind.BLOOD_GLUCOSE:
            return True
        source_name = sample.source.name.lower()
        return any(vendor in source_name for vendor in self._glucose_vendors)

    def to_added_record(self, stream: SampleStreamKind, sample: RawSample) -> CacheRecord | None:
        """Map a new sample, or return None if the stream's source policy rejects it.

        Raises SerializationError if the sample has no OMH representation.
        """
        if not self.accepts(stream, sample):
            logger.info(
                "sample_ignored_source_not_allowed",
                stream=stream.value,
                sample_id=sample.uuid,
                source_name=sample.source.name,
            )
            return None

        logger.debug(
            "sample_provenance",
            sample_id=sample.uuid,
            source=sample.source.model_dump(),
            device=sample.device.model_dump(exclude_none=True) if sample.device else None,
        )

        value = None
        unit = None
        if stream.canonical_unit is not None and sample.quantity is not None:
            value = glucose_mg_per_dl(sample.uuid, sample.quantity)
            unit = stream.canonical_unit

        payload = serialize_sample(stream, sample)
        try:
            return CacheRecord(
                id=sample.uuid,
                stream_kind=stream,
                action=SampleAction.ADDED,
                source_name=sample.source.name,
                source_bundle_identifier=sample.source.bundle_identifier,
                source_version=sample.source.version or "",
                device=sample.device,
                start_date=sample.start_date,
                end_date=sample.end_date,
                value=value,
                unit=unit,
                serialized_payload=payload,
            )
        except ValidationError as exc:
            raise SerializationError(sample.uuid, str(exc)) from exc

    def to_deleted_record(self, stream: SampleStreamKind, marker: DeletionMarker) -> CacheRecord:
        return CacheRecord(id=marker.uuid, stream_kind=stream, action=SampleAction.DELETED)
