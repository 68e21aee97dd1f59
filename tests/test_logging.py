"""Tests for structured logging configuration."""

import json

import pytest
import structlog

from plogseq.config import Settings
from plogseq.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_structlog():
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _settings(**logging_kwargs) -> Settings:
    return Settings(logging=logging_kwargs)


class TestConfigureLogging:
    def test_returns_eight_char_hex_run_id(self):
        run_id = configure_logging(_settings())
        assert len(run_id) == 8
        assert all(c in "0123456789abcdef" for c in run_id)

    def test_run_id_bound_to_context_vars(self):
        run_id = configure_logging(_settings())
        assert structlog.contextvars.get_contextvars()["run_id"] == run_id

    def test_reconfigure_replaces_run_id(self):
        first = configure_logging(_settings())
        second = configure_logging(_settings())
        assert second != first
        assert structlog.contextvars.get_contextvars()["run_id"] == second

    def test_loads_settings_when_none_given(self):
        from plogseq.config import get_settings

        get_settings.cache_clear()
        assert len(configure_logging(None)) == 8
        get_settings.cache_clear()


class TestOutput:
    def test_json_lines_on_stderr(self, capsys):
        run_id = configure_logging(_settings(format="json"))
        get_logger("plogseq.manager").info("PLOG opened", sequence=42)
        captured = capsys.readouterr()
        assert captured.out == ""
        event = json.loads(captured.err.strip())
        assert event["event"] == "PLOG opened"
        assert event["sequence"] == 42
        assert event["level"] == "info"
        assert event["run_id"] == run_id
        assert "timestamp" in event

    def test_level_filters_debug(self, capsys):
        configure_logging(_settings(level="INFO"))
        get_logger(__name__).debug("scanning")
        assert capsys.readouterr().err == ""

    def test_debug_level_emits_debug(self, capsys):
        configure_logging(_settings(level="DEBUG"))
        get_logger(__name__).debug("scanning")
        assert "scanning" in capsys.readouterr().err

    def test_text_format(self, capsys):
        configure_logging(_settings(format="text"))
        get_logger(__name__).warning("no new PLOG found, checking producer", sequence=7)
        err = capsys.readouterr().err
        assert "no new PLOG found" in err
        assert "sequence" in err


class TestCaptureLogs:
    def test_capture_logs_records_events(self):
        configure_logging(_settings())
        with structlog.testing.capture_logs() as events:
            get_logger(__name__).warning("forcing shutdown of PLOG scanning", sequence=3)
        assert events == [
            {"event": "forcing shutdown of PLOG scanning", "sequence": 3, "log_level": "warning"}
        ]
