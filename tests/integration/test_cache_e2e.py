"""End-to-end: HTTP request → cache pipeline → SQLite queue → upload drain.

The worker runs on the app's event loop, so the tests poll the records
endpoint until the batch has landed.
"""

import time

import pytest
import structlog

GLUCOSE_IDS = [
    "3F2B7C1A-0D4E-4F6B-9A51-2C8E7D4B1A01",
    "3F2B7C1A-0D4E-4F6B-9A51-2C8E7D4B1A02",
]
WORKOUT_ID = "9C1D4E2F-7A3B-4C5D-8E6F-0A1B2C3D4E01"


def wait_for_records(client, expected: int, timeout: float = 5.0, **params) -> list[dict]:
    deadline = time.monotonic() + timeout
    while True:
        records = client.get("/api/v1/cache/records", params=params).json()["data"]
        if len(records) >= expected or time.monotonic() > deadline:
            return records
        time.sleep(0.05)


class TestCacheE2E:
    def test_lifespan_configures_json_logging(self, live_client):
        assert isinstance(
            structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer
        )

    def test_nothing_cached_before_start(self, live_client):
        resp = live_client.get("/api/v1/cache/records")
        assert resp.status_code == 200
        assert resp.json()["data"] == []

        streams = live_client.get("/api/v1/cache/streams").json()["data"]
        assert {s["state"] for s in streams} == {"Idle"}
        assert not any(s["authorization_requested"] for s in streams)

    def test_start_caches_allowed_glucose(self, live_client):
        resp = live_client.post("/api/v1/cache/streams/BloodGlucose/start")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["state"] in ("Observing", "Fetching")
        assert data["authorization_requested"] is True
        assert data["background_delivery"] is True

        records = wait_for_records(live_client, 2)
        assert [r["id"] for r in records] == GLUCOSE_IDS
        assert all(r["unit"] == "mg/dL" for r in records)
        assert records[1]["value"] == pytest.approx(117.101322)
        assert records[0]["payload"]["header"]["schema_id"]["name"] == "blood-glucose"

    def test_both_streams_and_statistics(self, live_client):
        live_client.post("/api/v1/cache/streams/BloodGlucose/start")
        live_client.post("/api/v1/cache/streams/Workout/start")

        records = wait_for_records(live_client, 3)
        assert sorted(r["id"] for r in records) == sorted([*GLUCOSE_IDS, WORKOUT_ID])

        deadline = time.monotonic() + 5.0
        while True:
            stats = live_client.get("/api/v1/cache/statistics").json()["data"]
            if stats["total_cache_count"] == 3 or time.monotonic() > deadline:
                break
            time.sleep(0.05)
        assert stats["total_cache_count"] == 3
        assert stats["last_cache_count"] == 3
        assert stats["streams"]["Workout"]["total_cache_count"] == 1

    def test_stop_returns_idle(self, live_client):
        live_client.post("/api/v1/cache/streams/Workout/start")
        wait_for_records(live_client, 1, stream="Workout")

        resp = live_client.post("/api/v1/cache/streams/Workout/stop")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["state"] == "Idle"
        assert data["observing"] is False
        assert data["background_delivery"] is False

    def test_drain_pages_through_queue(self, live_client):
        live_client.post("/api/v1/cache/streams/BloodGlucose/start")
        wait_for_records(live_client, 2)

        first = live_client.get("/api/v1/cache/records", params={"limit": 1}).json()
        assert first["pagination"]["has_more"] is True
        second = live_client.get(
            "/api/v1/cache/records",
            params={"limit": 1, "cursor": first["pagination"]["next_cursor"]},
        ).json()
        assert [r["id"] for r in first["data"] + second["data"]] == GLUCOSE_IDS
        assert second["pagination"]["has_more"] is False
