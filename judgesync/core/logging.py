"""
JudgeSync - Structured Logging

JSON log lines for production and a compact console format for development.
Every entry carries timestamp, level, logger name, message, and whatever
context was bound with LogContext (sync_id, job_id, sync_type, ...).

Usage:
    from judgesync.core.logging import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(sync_id=sync_id, sync_type="judge"):
        logger.info("Batch started")
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator

# =============================================================================
# Context Variables
# =============================================================================

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_current_context() -> Dict[str, Any]:
    """Get current logging context."""
    return _log_context.get().copy()


def set_context(**kwargs: Any) -> None:
    """Set context values for current async context."""
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def clear_context() -> None:
    _log_context.set({})


# =============================================================================
# Redaction
# =============================================================================

REDACT_PATTERNS = frozenset(
    {"password", "secret", "api_key", "apikey", "token", "signature", "authorization"}
)


def redact_sensitive(data: Any, max_depth: int = 10) -> Any:
    """Recursively replace values of sensitive-looking keys with [REDACTED]."""
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(pattern in key_lower for pattern in REDACT_PATTERNS):
                result[key] = "[REDACTED]"
            else:
                result[key] = redact_sensitive(value, max_depth - 1)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, max_depth - 1) for item in data]

    return data


# =============================================================================
# Formatters
# =============================================================================

# Fields passed through logger.x(..., extra={...}) that end up in JSON output
_EXTRA_KEYS = (
    "sync_id",
    "sync_type",
    "job_id",
    "job_type",
    "endpoint",
    "external_id",
    "event_type",
    "webhook_id",
    "duration_ms",
    "status",
    "count",
    "attempt",
    "delay_seconds",
)


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON log formatter for production environments.

    Output format:
    {
        "timestamp": "2026-03-01T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "judgesync.sync.base",
        "message": "Sync run finished",
        "sync_id": "abc-123",
        "duration_ms": 1234
    }
    """

    def __init__(self, redact_sensitive_data: bool = True):
        super().__init__()
        self.redact_sensitive_data = redact_sensitive_data

    def format(self, record: logging.LogRecord) -> str:
        log_dict: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_current_context()
        if context:
            log_dict.update(context)

        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_dict[key] = value

        if record.exc_info:
            log_dict["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if self.redact_sensitive_data:
            log_dict = redact_sensitive(log_dict)

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for development."""

    def format(self, record: logging.LogRecord) -> str:
        context_parts = []
        context = get_current_context()
        for key in ("sync_type", "sync_id", "job_id"):
            if key in context:
                value = str(context[key])
                context_parts.append(f"{key}={value[:8] if key != 'sync_type' else value}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        line = f"[{timestamp}] {record.levelname:8} {record.name}:{context_str} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return line


# =============================================================================
# Split-Stream Handlers (stdout for INFO/DEBUG, stderr for WARNING+)
# =============================================================================


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _create_split_handlers(
    formatter: logging.Formatter,
    level: int = logging.DEBUG,
) -> list[logging.Handler]:
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    return [stdout_handler, stderr_handler]


# =============================================================================
# Configuration
# =============================================================================


def configure_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = "judgesync",
) -> None:
    """
    Configure root logging.

    Args:
        level: Log level name
        json_output: JSON lines when True, console format otherwise
        service_name: Added to the context of every record
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter: logging.Formatter = (
        StructuredJsonFormatter() if json_output else ConsoleFormatter()
    )
    for handler in _create_split_handlers(formatter, numeric_level):
        root_logger.addHandler(handler)

    set_context(service=service_name)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def LogContext(**kwargs: Any) -> Generator[None, None, None]:
    """
    Context manager adding fields to all logs within the block.

    Usage:
        with LogContext(job_id=job.id):
            logger.info("Running job")
    """
    previous = _log_context.get().copy()
    try:
        new_context = previous.copy()
        new_context.update(kwargs)
        _log_context.set(new_context)
        yield
    finally:
        _log_context.set(previous)
