"""Domain models for the health sample cache.

RawSample and DeletionMarker are what the health data provider hands us.
CacheRecord is the durable unit of the upload queue: created once by the
sample mapper, appended, and never mutated. A deleted sample produces a new
Deleted record rather than removing the Added one.

Design principles:
- Provider-agnostic: nothing here depends on a concrete health platform
- Append-only: the queue is a log the upload drain consumes in seq order
- Nullable payload fields: None = "not applicable to this action/stream"
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class SampleStreamKind(StrEnum):
    BLOOD_GLUCOSE = "BloodGlucose"
    WORKOUT = "Workout"

    @property
    def state_suffix(self) -> str:
        """Suffix of the persisted per-stream keys, e.g. lastCacheCountWorkoutSamples."""
        return f"{self.value}Samples"

    @property
    def anchor_key(self) -> str:
        return f"{self.value[0].lower()}{self.value[1:]}QueryAnchor"

    @property
    def type_identifier(self) -> str:
        """The provider's type identifier for this stream."""
        return _TYPE_IDENTIFIERS[self]

    @property
    def canonical_unit(self) -> str | None:
        return _CANONICAL_UNITS[self]


_TYPE_IDENTIFIERS = {
    SampleStreamKind.BLOOD_GLUCOSE: "HKQuantityTypeIdentifierBloodGlucose",
    SampleStreamKind.WORKOUT: "HKWorkoutTypeIdentifier",
}

_CANONICAL_UNITS = {
    SampleStreamKind.BLOOD_GLUCOSE: "mg/dL",
    SampleStreamKind.WORKOUT: None,
}


class SampleAction(StrEnum):
    ADDED = "Added"
    DELETED = "Deleted"


class SourceRevision(BaseModel):
    name: str
    bundle_identifier: str
    version: str | None = None


class DeviceDescriptor(BaseModel):
    name: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    hardware_version: str | None = None
    firmware_version: str | None = None
    software_version: str | None = None
    local_identifier: str | None = None
    udi_device_identifier: str | None = None


class Quantity(BaseModel):
    value: float
    unit: str


class WorkoutDetails(BaseModel):
    activity_type: str
    duration_seconds: float | None = Field(None, ge=0)
    total_energy_burned_kcal: float | None = Field(None, ge=0)
    total_distance_meters: float | None = Field(None, ge=0)


class RawSample(BaseModel):
    """A sample as delivered by the health data provider."""

    uuid: str
    start_date: AwareDatetime
    end_date: AwareDatetime
    source: SourceRevision
    device: DeviceDescriptor | None = None

    # Kind-specific payload
    quantity: Quantity | None = None
    workout: WorkoutDetails | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)


class DeletionMarker(BaseModel):
    """The provider's notice that a previously delivered sample was deleted."""

    uuid: str


class CacheRecord(BaseModel):
    """One entry of the upload queue.

    (id, action) is meant to be unique but is not enforced: a crash between
    the queue commit and the anchor store re-delivers the batch.
    """

    id: str
    stream_kind: SampleStreamKind
    action: SampleAction

    # Provenance (empty for Deleted)
    source_name: str = ""
    source_bundle_identifier: str = ""
    source_version: str = ""
    device: DeviceDescriptor | None = None

    # Temporal (None for Deleted)
    start_date: datetime | None = None
    end_date: datetime | None = None

    # Quantity payload (quantity streams, Added only)
    value: float | None = None
    unit: str | None = None

    # Open mHealth JSON ("" for Deleted)
    serialized_payload: str = ""

    # Assigned by the store on append
    seq: int | None = None

    @model_validator(mode="after")
    def check_deleted_shape(self) -> "CacheRecord":
        if self.action == SampleAction.DELETED and (
            self.serialized_payload
            or self.start_date is not None
            or self.end_date is not None
            or self.value is not None
            or self.unit is not None
        ):
            raise ValueError("Deleted records carry only an id")
        return self
