"""Tests for domain models: stream kinds, actions, record shape."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from healthcache.domain.models import (
    CacheRecord,
    RawSample,
    SampleAction,
    SampleStreamKind,
    SourceRevision,
)
from tests.conftest import SAMPLE_TIME, make_workout_sample


class TestSampleStreamKind:
    def test_values(self):
        assert {s.value for s in SampleStreamKind} == {"BloodGlucose", "Workout"}

    def test_state_suffix(self):
        assert SampleStreamKind.BLOOD_GLUCOSE.state_suffix == "BloodGlucoseSamples"
        assert SampleStreamKind.WORKOUT.state_suffix == "WorkoutSamples"

    def test_anchor_key(self):
        assert SampleStreamKind.BLOOD_GLUCOSE.anchor_key == "bloodGlucoseQueryAnchor"
        assert SampleStreamKind.WORKOUT.anchor_key == "workoutQueryAnchor"

    def test_type_identifier(self):
        assert (
            SampleStreamKind.BLOOD_GLUCOSE.type_identifier
            == "HKQuantityTypeIdentifierBloodGlucose"
        )
        assert SampleStreamKind.WORKOUT.type_identifier == "HKWorkoutTypeIdentifier"

    def test_canonical_unit(self):
        assert SampleStreamKind.BLOOD_GLUCOSE.canonical_unit == "mg/dL"
        assert SampleStreamKind.WORKOUT.canonical_unit is None


class TestSampleAction:
    def test_values(self):
        assert SampleAction("Added") is SampleAction.ADDED
        assert SampleAction("Deleted") is SampleAction.DELETED

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            SampleAction("Updated")


class TestCacheRecord:
    def test_deleted_record_defaults_are_empty(self):
        record = CacheRecord(
            id="abc", stream_kind=SampleStreamKind.WORKOUT, action=SampleAction.DELETED
        )
        assert record.serialized_payload == ""
        assert record.source_name == ""
        assert record.start_date is None
        assert record.end_date is None
        assert record.value is None
        assert record.unit is None

    def test_deleted_record_with_payload_rejected(self):
        with pytest.raises(ValidationError):
            CacheRecord(
                id="abc",
                stream_kind=SampleStreamKind.BLOOD_GLUCOSE,
                action=SampleAction.DELETED,
                serialized_payload="{}",
            )

    def test_deleted_record_with_dates_rejected(self):
        with pytest.raises(ValidationError):
            CacheRecord(
                id="abc",
                stream_kind=SampleStreamKind.BLOOD_GLUCOSE,
                action=SampleAction.DELETED,
                start_date=SAMPLE_TIME,
            )

    def test_action_is_enum_not_string(self):
        record = CacheRecord(
            id="abc", stream_kind="BloodGlucose", action="Added", serialized_payload="{}"
        )
        assert record.action is SampleAction.ADDED
        assert record.stream_kind is SampleStreamKind.BLOOD_GLUCOSE


class TestRawSample:
    def test_aware_dates_accepted(self):
        sample = make_workout_sample()
        assert sample.start_date.utcoffset() == timedelta(0)

    def test_naive_date_rejected(self):
        with pytest.raises(ValidationError):
            RawSample(
                uuid="naive",
                start_date=SAMPLE_TIME.replace(tzinfo=None),
                end_date=SAMPLE_TIME,
                source=SourceRevision(name="Apple Watch", bundle_identifier="com.apple.health"),
            )
