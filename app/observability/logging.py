"""
Structured Logging with Structlog.

Every log line carries the service name, version and environment. Callback
secrets (``signature``, signing keys) are masked before rendering, so a raw
callback query can be logged safely.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from app.config import settings

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset(
    {"signature", "signing_key", "private_key", "applovin_signing_key", "ironsource_private_key"}
)


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with service name, version and environment."""
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("version", settings.api_version)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask SSV signatures and shared secrets."""
    for key in SENSITIVE_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog over the stdlib logging module.

    Defaults come from settings; maintenance scripts may override them.

    A JSON entry looks like:
    {
        "event": "reward_granted",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "app.services.rewards",
        "service": "ad-rewards-api",
        "request_id": "req-123",
        "platform": "admob",
        "transaction_id": "T1",
        ...
    }
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format or settings.log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """
    Bind context variables for every log line emitted inside the block.

    Usage:
        with log_context(request_id="req-123", platform="admob"):
            logger.info("processing_reward_callback")
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield
