"""Integration test fixtures: the real app lifespan over a temporary SQLite store.

Run with: pytest tests/integration -v
"""

import pytest
import structlog
from fastapi.testclient import TestClient

import main
from shared.config import settings
from shared.database import make_engine, make_session_factory


@pytest.fixture
def live_client(tmp_path, monkeypatch, fixture_path):
    """TestClient with the lifespan running against a file-backed store.

    The provider is the fixture store loaded from tests/fixtures.
    """
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'healthcache.nosync.db'}")
    session_factory = make_session_factory(engine)
    monkeypatch.setattr(main, "engine", engine)
    monkeypatch.setattr(main, "async_session_factory", session_factory)
    monkeypatch.setattr(settings, "fixture_path", str(fixture_path))
    monkeypatch.setattr(settings, "autostart_caching", False)

    with TestClient(main.app) as client:
        yield client
    structlog.reset_defaults()
