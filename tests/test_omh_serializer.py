"""Tests for the Open mHealth data point serializer."""

import json
from datetime import timedelta

import pytest

from healthcache.adapters.omh_serializer import (
    glucose_mg_per_dl,
    sample_to_omh_data_point,
    serialize_sample,
)
from healthcache.domain.models import Quantity, SampleStreamKind
from shared.exceptions import SerializationError
from tests.conftest import SAMPLE_TIME, make_glucose_sample, make_workout_sample

GLUCOSE = SampleStreamKind.BLOOD_GLUCOSE
WORKOUT = SampleStreamKind.WORKOUT


class TestHeader:
    def test_schema_id_blood_glucose(self):
        point = sample_to_omh_data_point(GLUCOSE, make_glucose_sample())
        assert point["header"]["schema_id"] == {
            "namespace": "omh",
            "name": "blood-glucose",
            "version": "1.0",
        }

    def test_schema_id_workout(self):
        point = sample_to_omh_data_point(WORKOUT, make_workout_sample())
        assert point["header"]["schema_id"]["name"] == "physical-activity"

    def test_id_and_provenance(self):
        point = sample_to_omh_data_point(GLUCOSE, make_glucose_sample(uuid="g-42"))
        assert point["header"]["id"] == "g-42"
        assert point["header"]["acquisition_provenance"]["source_name"] == "Dexcom G6"


class TestBloodGlucoseBody:
    def test_mg_per_dl_passthrough(self):
        point = sample_to_omh_data_point(GLUCOSE, make_glucose_sample(value=112.0))
        assert point["body"]["blood_glucose"] == {"value": 112.0, "unit": "mg/dL"}

    def test_mmol_converted_to_mg_per_dl(self):
        sample = make_glucose_sample(value=5.5, unit="mmol<180.1558800000541>/L")
        point = sample_to_omh_data_point(GLUCOSE, sample)
        assert point["body"]["blood_glucose"]["value"] == pytest.approx(99.085734)
        assert point["body"]["blood_glucose"]["unit"] == "mg/dL"

    def test_point_sample_uses_date_time(self):
        point = sample_to_omh_data_point(GLUCOSE, make_glucose_sample())
        assert point["body"]["effective_time_frame"] == {"date_time": SAMPLE_TIME.isoformat()}

    def test_missing_quantity_raises(self):
        sample = make_glucose_sample().model_copy(update={"quantity": None})
        with pytest.raises(SerializationError) as exc_info:
            serialize_sample(GLUCOSE, sample)
        assert exc_info.value.sample_id == "glucose-1"

    def test_unknown_unit_raises(self):
        with pytest.raises(SerializationError):
            glucose_mg_per_dl("g1", Quantity(value=1.0, unit="g/L"))


class TestWorkoutBody:
    def test_interval_distance_and_energy(self):
        point = sample_to_omh_data_point(WORKOUT, make_workout_sample(minutes=40))
        body = point["body"]
        assert body["activity_name"] == "Running"
        assert body["effective_time_frame"]["time_interval"] == {
            "start_date_time": SAMPLE_TIME.isoformat(),
            "end_date_time": (SAMPLE_TIME + timedelta(minutes=40)).isoformat(),
        }
        assert body["distance"] == {"value": 6210.0, "unit": "m"}
        assert body["kcal_burned"] == {"value": 412.5, "unit": "kcal"}

    def test_missing_workout_details_raises(self):
        sample = make_workout_sample().model_copy(update={"workout": None})
        with pytest.raises(SerializationError):
            serialize_sample(WORKOUT, sample)

    def test_end_before_start_raises(self):
        sample = make_workout_sample().model_copy(
            update={"end_date": SAMPLE_TIME - timedelta(minutes=1)}
        )
        with pytest.raises(SerializationError):
            serialize_sample(WORKOUT, sample)

    def test_naive_start_with_aware_end_raises(self):
        naive = SAMPLE_TIME.replace(tzinfo=None)
        sample = make_workout_sample().model_copy(update={"start_date": naive})
        with pytest.raises(SerializationError, match="incomparable"):
            serialize_sample(WORKOUT, sample)


class TestSerializeSample:
    def test_produces_valid_json(self):
        text = serialize_sample(GLUCOSE, make_glucose_sample())
        assert json.loads(text)["header"]["id"] == "glucose-1"

    def test_deterministic(self):
        sample = make_workout_sample()
        assert serialize_sample(WORKOUT, sample) == serialize_sample(WORKOUT, sample)
