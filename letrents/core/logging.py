"""
core/logging.py
---------------
Structured logging using structlog.
DEBUG=true  → human-readable console output
DEBUG=false → JSON, one event per line

Every event passes through redact_secrets first. Services log key-value
pairs freely; values under credential-like keys (passwords, refresh tokens,
M-Pesa consumer credentials) are masked before rendering. Links logged as
a manual email fallback (verification_url, reset_url) are left intact.

Request context (request_id, method, path) is bound per request by the
middleware in main.py and merged into every event via contextvars.
"""

import logging
import sys
from typing import Any, MutableMapping

import structlog

from letrents.core.config import settings

REDACTED = "***"

SECRET_KEYS = frozenset(
    {
        "password",
        "new_password",
        "current_password",
        "password_hash",
        "token",
        "refresh_token",
        "access_token",
        "consumer_key",
        "consumer_secret",
        "authorization",
        "smtp_password",
    }
)


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: mask values whose key names a credential."""
    for key in event_dict.keys() & SECRET_KEYS:
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging() -> None:
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    if not settings.DEBUG:
        # httpx logs full Daraja URLs at INFO; keep them out of production logs
        for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "aiosmtplib"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer()
        if settings.DEBUG
        else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(request_id: str, method: str, path: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
