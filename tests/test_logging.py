"""Tests for the structlog setup."""

import json
import logging

import structlog

from affiliate_engine.logging_config import NOISY_LOGGERS, build_processors, configure_logging
from affiliate_engine.settings import Settings


def _render(processors, **event_dict) -> str:
    for processor in processors:
        event_dict = processor(None, "info", event_dict)
    return event_dict


class TestProcessors:
    def test_json_entries_carry_service_context(self) -> None:
        cfg = Settings(_env_file=None, env="production", app_name="affiliates-eu")

        line = _render(build_processors("json", cfg), event="withdrawal_requested", withdrawal_id=7)

        body = json.loads(line)
        assert body["event"] == "withdrawal_requested"
        assert body["withdrawal_id"] == 7
        assert body["app"] == "affiliates-eu"
        assert body["env"] == "production"
        assert body["level"] == "info"
        assert "timestamp" in body

    def test_explicit_context_is_kept(self) -> None:
        cfg = Settings(_env_file=None, env="production")

        line = _render(build_processors("json", cfg), event="sweep_finished", env="replay")

        assert json.loads(line)["env"] == "replay"

    def test_console_renderer_for_local_runs(self) -> None:
        processors = build_processors("console", Settings(_env_file=None))
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


class TestConfigureLogging:
    def test_library_loggers_quieted(self) -> None:
        configure_logging("INFO", "console", Settings(_env_file=None))

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_debug_lets_library_loggers_through(self) -> None:
        try:
            configure_logging("DEBUG", "console", Settings(_env_file=None))
            assert logging.getLogger("sqlalchemy.engine").level == logging.DEBUG
        finally:
            configure_logging("INFO", "console", Settings(_env_file=None))
