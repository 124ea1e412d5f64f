"""
Structured logging configuration with structlog.

JSON lines in production, coloured console output everywhere else. Event
fields that could carry Google credentials are masked before rendering.
"""
import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from siteinsights.core.config import settings

REDACTED = "[redacted]"
SECRET_FIELDS = frozenset({
    "access_token",
    "assertion",
    "authorization",
    "google_private_key",
    "pagespeed_api_key",
    "private_key",
})

# Loggers that are too chatty at INFO for a beacon-heavy service
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _renderer_chain() -> list[Processor]:
    if settings.environment == "production":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging() -> None:
    """Configure structlog and route stdlib logging to stdout."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
        *_renderer_chain(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
