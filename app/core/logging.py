# app/core/logging.py
from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

import structlog

from app.config import settings

# Keys whose values never reach the log sink. Award metadata is caller
# supplied, so nested dicts are scanned too.
_REDACTED = "***redacted***"
_PII_KEYS = {
    "email", "phone", "authorization", "token", "access_token",
    "api_key", "password", "secret", "dsn", "redis_url", "database_url",
}


# -------- Processors ---------------------------------------------------------

def _add_service(service_name: str):
    def _inner(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (_REDACTED if str(k).lower() in _PII_KEYS else _redact(v))
            for k, v in value.items()
        }
    return value


def _pii_guard(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    return _redact(event_dict)


def _plain_values(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # Transaction ids and XP enums render as their plain values
    for k, v in event_dict.items():
        if isinstance(v, UUID):
            event_dict[k] = str(v)
        elif isinstance(v, Enum):
            event_dict[k] = v.value
    return event_dict


# -------- Public API ---------------------------------------------------------

_logger: Optional[structlog.BoundLogger] = None


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    return logging.getLevelName(settings.LOG_LEVEL)


def configure_logging(service_name: str = "xp", *, level: Optional[int] = None) -> None:
    """
    Configure one global structlog JSON stack for the engine, the decay
    worker and scripts. ``level`` defaults to ``LOG_LEVEL``.
    """
    global _logger
    resolved = _resolve_level(level)

    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.add_log_level,
            _add_service(service_name),
            _plain_values,
            _pii_guard,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()


def get_logger() -> structlog.BoundLogger:
    if _logger is None:
        configure_logging("xp")
    return _logger
