"""Open mHealth data point serializer for raw provider samples.

Converts a RawSample into an OMH data point (header + body). This is the
provider-agnostic payload stored with each Added record and uploaded later.

Design decisions:
- blood glucose: omh:blood-glucose:1.0, value always in mg/dL
- workouts: omh:physical-activity:1.0, distance in m, energy in kcal
- effective_time_frame: date_time for point samples, time_interval otherwise
- header.creation_date_time is the sample start, so re-serializing the same
  sample yields byte-identical JSON
"""

import json
from typing import Any

from healthcache.domain.models import Quantity, RawSample, SampleStreamKind
from shared.exceptions import SerializationError

OMH_NAMESPACE = "omh"

# HealthKit spells molar glucose units with the molar mass, e.g. mmol<180.1558800000541>/L
MG_PER_DL_PER_MMOL_PER_L = 18.015588

_SCHEMAS: dict[SampleStreamKind, tuple[str, str]] = {
    SampleStreamKind.BLOOD_GLUCOSE: ("blood-glucose", "1.0"),
    SampleStreamKind.WORKOUT: ("physical-activity", "1.0"),
}


def glucose_mg_per_dl(sample_id: str, quantity: Quantity) -> float:
    """Convert a glucose quantity to mg/dL. Unknown units are not representable."""
    unit = quantity.unit.strip()
    if unit.lower() == "mg/dl":
        return quantity.value
    if unit.startswith("mmol") and unit.endswith("/L"):
        return quantity.value * MG_PER_DL_PER_MMOL_PER_L
    raise SerializationError(sample_id, f"unsupported glucose unit '{quantity.unit}'")


def _time_frame(sample: RawSample) -> dict[str, Any]:
    try:
        ends_before_start = sample.end_date < sample.start_date
    except TypeError as exc:
        # naive and aware datetimes do not compare
        raise SerializationError(sample.uuid, f"incomparable start/end dates: {exc}") from exc
    if ends_before_start:
        raise SerializationError(sample.uuid, "end_date is before start_date")
    if sample.start_date == sample.end_date:
        return {"date_time": sample.start_date.isoformat()}
    return {
        "time_interval": {
            "start_date_time": sample.start_date.isoformat(),
            "end_date_time": sample.end_date.isoformat(),
        }
    }


def _glucose_body(sample: RawSample) -> dict[str, Any]:
    if sample.quantity is None:
        raise SerializationError(sample.uuid, "blood glucose sample has no quantity")
    body: dict[str, Any] = {
        "blood_glucose": {
            "value": glucose_mg_per_dl(sample.uuid, sample.quantity),
            "unit": "mg/dL",
        },
        "effective_time_frame": _time_frame(sample),
    }
    meal = sample.metadata.get("temporal_relationship_to_meal")
    if meal:
        body["temporal_relationship_to_meal"] = meal
    return body


def _workout_body(sample: RawSample) -> dict[str, Any]:
    workout = sample.workout
    if workout is None:
        raise SerializationError(sample.uuid, "workout sample has no workout details")
    body: dict[str, Any] = {
        "activity_name": workout.activity_type,
        "effective_time_frame": _time_frame(sample),
    }
    if workout.total_distance_meters is not None:
        body["distance"] = {"value": workout.total_distance_meters, "unit": "m"}
    if workout.total_energy_burned_kcal is not None:
        body["kcal_burned"] = {"value": workout.total_energy_burned_kcal, "unit": "kcal"}
    return body


def sample_to_omh_data_point(stream: SampleStreamKind, sample: RawSample) -> dict[str, Any]:
    """Convert a RawSample into an Open mHealth data point."""
    name, version = _SCHEMAS[stream]
    if stream == SampleStreamKind.BLOOD_GLUCOSE:
        body = _glucose_body(sample)
    else:
        body = _workout_body(sample)

    return {
        "header": {
            "id": sample.uuid,
            "creation_date_time": sample.start_date.isoformat(),
            "schema_id": {"namespace": OMH_NAMESPACE, "name": name, "version": version},
            "acquisition_provenance": {
                "source_name": sample.source.name,
                "modality": "sensed",
            },
        },
        "body": body,
    }


def serialize_sample(stream: SampleStreamKind, sample: RawSample) -> str:
    """OMH data point as canonical JSON text."""
    data_point = sample_to_omh_data_point(stream, sample)
    try:
        return json.dumps(data_point, sort_keys=True, allow_nan=False)
    except ValueError as exc:
        raise SerializationError(sample.uuid, str(exc)) from exc
