"""Structured logging for covenant.

Events are rendered as one JSON object per line. Request-scoped values such
as the correlation ID and the requested method are carried in contextvars so
that gates, handlers and the cache layer all log them without plumbing.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

# Credential material that must never reach a log sink.
REDACTED_KEYS = frozenset({"api_secret", "secret", "signature", "session_token"})


def redact_credentials(
    _logger: Any, _method: str, event: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in REDACTED_KEYS.intersection(event):
        event[key] = "***"
    return event


def configure_logging(level: str) -> None:
    """Route structlog through stdlib logging at ``level`` with JSON output."""
    threshold = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=threshold)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        redact_credentials,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(sort_keys=True),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_correlation_id(correlation_id: str) -> None:
    bind_contextvars(correlation_id=correlation_id)


def bind_request(**fields: object) -> None:
    """Bind request-scoped fields such as the requested method."""
    bind_contextvars(**fields)


def clear_logging_context() -> None:
    clear_contextvars()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return cast(structlog.BoundLogger, structlog.get_logger(name))
