"""Health store factory: returns the provider implementation for provider_mode.

Only "fixture" mode ships here: an in-memory store, optionally seeded from a
JSON file. A device-backed store implements the same HealthStore protocol
and is plugged in by the host application.
"""

from healthcache.adapters.fixture_store import FixtureHealthStore
from healthcache.adapters.protocol import HealthStore
from shared.config import settings


def get_health_store(mode: str | None = None, fixture_path: str | None = None) -> HealthStore:
    mode = mode or settings.provider_mode
    path = settings.fixture_path if fixture_path is None else fixture_path
    if mode != "fixture":
        raise ValueError(f"Unsupported provider mode: {mode}. Must be one of: ['fixture']")
    if path:
        return FixtureHealthStore.from_file(path)
    return FixtureHealthStore()
