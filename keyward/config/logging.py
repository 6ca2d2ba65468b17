"""Structured logging configuration using structlog.

Ceremony secrets never reach the log stream: the redaction processor masks
registration tokens, raw attestation payloads and session cookies before
rendering.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_REDACTED_FIELDS = frozenset(
    {
        "token",
        "token_id",
        "registration",
        "attestation_object",
        "client_data_json",
        "session",
        "secret_key",
    }
)


def redact_ceremony_secrets(
    _logger: Any, _method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask values of known-sensitive keys."""
    for key in _REDACTED_FIELDS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog on top of stdlib logging."""
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_ceremony_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if json_output or not sys.stderr.isatty():
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
