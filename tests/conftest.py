"""Shared test fixtures."""

import json
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from healthcache.adapters.fixture_store import FixtureHealthStore  # noqa: E402
from healthcache.domain.models import (  # noqa: E402
    DeviceDescriptor,
    Quantity,
    RawSample,
    SourceRevision,
    WorkoutDetails,
)
from shared.database import init_db, make_engine, make_session_factory  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_TIME = datetime(2024, 3, 14, 8, 0, tzinfo=UTC)


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text())


def make_glucose_sample(
    uuid: str = "glucose-1",
    source_name: str = "Dexcom G6",
    value: float = 120.0,
    unit: str = "mg/dL",
    start: datetime = SAMPLE_TIME,
) -> RawSample:
    return RawSample(
        uuid=uuid,
        start_date=start,
        end_date=start,
        source=SourceRevision(
            name=source_name, bundle_identifier="com.dexcom.G6", version="1.14.1"
        ),
        device=DeviceDescriptor(name="CGMBLEKit Transmitter", manufacturer="Dexcom", model="G6"),
        quantity=Quantity(value=value, unit=unit),
    )


def make_workout_sample(
    uuid: str = "workout-1",
    start: datetime = SAMPLE_TIME,
    minutes: int = 40,
) -> RawSample:
    return RawSample(
        uuid=uuid,
        start_date=start,
        end_date=start + timedelta(minutes=minutes),
        source=SourceRevision(name="Apple Watch", bundle_identifier="com.apple.health"),
        workout=WorkoutDetails(
            activity_type="Running",
            duration_seconds=minutes * 60,
            total_energy_burned_kcal=412.5,
            total_distance_meters=6210.0,
        ),
    )


@pytest.fixture
def fixture_path() -> Path:
    return FIXTURES_DIR / "healthkit_samples.json"


@pytest.fixture
def health_store() -> FixtureHealthStore:
    return FixtureHealthStore()


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite store with the schema created; disposed after the test."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'healthcache.nosync.db'}")
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()
