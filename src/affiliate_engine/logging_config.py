"""Structured logging for the engine, its API and its CLI."""

import logging
import sys
from typing import Any

import structlog

from affiliate_engine.settings import Settings, settings as default_settings

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "alembic.runtime.migration")


def service_context(cfg: Settings):
    """Processor stamping every JSON entry with the app name and environment."""

    def add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("app", cfg.app_name)
        event_dict.setdefault("env", cfg.env)
        return event_dict

    return add_service


def build_processors(log_format: str, cfg: Settings | None = None) -> list[Any]:
    """Processor chain for "json" (log shipping) or "console" (local runs)."""
    cfg = cfg or default_settings
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if log_format == "json":
        return shared + [
            service_context(cfg),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return shared + [
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        structlog.dev.ConsoleRenderer(),
    ]


def configure_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    cfg: Settings | None = None,
) -> None:
    """Configure structlog and the standard library loggers underneath it."""
    cfg = cfg or default_settings
    level = log_level or cfg.log_level

    structlog.configure(
        processors=build_processors(log_format or cfg.log_format, cfg),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level))
    # SQL echo and per-request lines only when explicitly debugging
    quiet = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
