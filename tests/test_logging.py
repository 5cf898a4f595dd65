"""Tests for the structlog configuration."""

import json

import pytest
import structlog

from shared.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_output_renders_one_object_per_line(self, capsys):
        configure_logging(json_output=True)
        structlog.get_logger().info("queue_appended", count=2)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "queue_appended"
        assert payload["count"] == 2
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_console_renderer_by_default(self):
        configure_logging()
        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_debug_filtered_at_info(self, capsys):
        configure_logging(json_output=True)
        structlog.get_logger().debug("sample_provenance", sample_id="g1")
        assert "sample_provenance" not in capsys.readouterr().out
