"""
Stream Ingestors - Structured Logging

Structured logging with JSON output for CloudWatch. All entries include:
- timestamp (ISO 8601)
- level
- logger name
- message
- Context fields (request_id, handler, session_id, ...)

Usage:
    from ingestor.core.logging import LogContext

    logger = logging.getLogger(__name__)

    with LogContext(request_id=request_id, handler="sqs"):
        logger.info("Processing started")
        # All logs in this block include request_id and handler
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator

from pydantic import BaseModel

# =============================================================================
# Context Variables for Correlation
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
    """Clear all context values."""
    _log_context.set({})


# =============================================================================
# Sensitive Data Redaction
# =============================================================================

REDACT_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "api_key",
        "apikey",
        "token",
        "credential",
        "authorization",
        "receipt_handle",
    }
)


def redact_sensitive(data: Any, max_depth: int = 10) -> Any:
    """
    Recursively redact sensitive fields from data structures.

    Args:
        data: Data to redact (dict, list, or primitive)
        max_depth: Maximum recursion depth to prevent infinite loops

    Returns:
        Data with sensitive fields redacted
    """
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

    if isinstance(data, BaseModel):
        return redact_sensitive(data.model_dump(), max_depth - 1)

    return data


# =============================================================================
# JSON Formatter
# =============================================================================

# Extra fields lifted from `logger.x(..., extra={...})` into the JSON document
EXTRA_KEYS = (
    "request_id",
    "session_id",
    "table_name",
    "identifier",
    "count",
    "duration_ms",
    "status",
    "error_code",
    "error_category",
    "error_message",
    "retryable",
    "exception_type",
    "state",
)


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON log formatter for Lambda environments.

    Output format:
    {
        "timestamp": "2025-12-07T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "ingestor.orchestrator",
        "message": "Stream closed",
        "request_id": "abc-123",
        "handler": "sqs",
        ...
    }
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_traceback: bool = True,
        redact_sensitive_data: bool = True,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_traceback = include_traceback
        self.redact_sensitive_data = redact_sensitive_data

    def format(self, record: logging.LogRecord) -> str:
        log_dict: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_dict["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()

        context = get_current_context()
        if context:
            log_dict.update(context)

        for key in EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_dict[key] = value

        if record.exc_info and self.include_traceback:
            log_dict["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if self.redact_sensitive_data:
            log_dict = redact_sensitive(log_dict)

        return json.dumps(log_dict, default=str, ensure_ascii=False)


# =============================================================================
# Console Formatter (for local runs)
# =============================================================================


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console output for local invocation."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")

        context = get_current_context()
        context_parts = [
            f"{key}={context[key]}" for key in ("request_id", "handler", "session_id") if key in context
        ]
        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        line = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{record.name}:{context_str} {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Split-Stream Handler (stdout for INFO/DEBUG, stderr for WARNING+)
# =============================================================================


class _MaxLevelFilter(logging.Filter):
    """Filter that passes records at or below a maximum level."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _create_split_handlers(
    formatter: logging.Formatter,
    level: int = logging.DEBUG,
) -> list[logging.Handler]:
    """
    Create handlers that route logs to stdout/stderr based on level.

    - DEBUG, INFO → stdout
    - WARNING, ERROR, CRITICAL → stderr
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(max(level, logging.WARNING))
    stderr_handler.setFormatter(formatter)

    return [stdout_handler, stderr_handler]


# =============================================================================
# Logger Configuration
# =============================================================================


def configure_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = "stream-ingestor",
) -> None:
    """
    Configure structured logging for the process.

    The Lambda runtime installs its own root handler; it is replaced so every
    line goes through our formatter.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, use JSON format; else use colored console
        service_name: Service name for log tagging
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter: logging.Formatter = StructuredJsonFormatter() if json_output else ColoredConsoleFormatter()
    for handler in _create_split_handlers(formatter, numeric_level):
        root_logger.addHandler(handler)

    # Quiet noisy transport loggers
    logging.getLogger("grpc").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    set_context(service=service_name)


# =============================================================================
# Context Manager
# =============================================================================


@contextmanager
def LogContext(**kwargs: Any) -> Generator[None, None, None]:
    """
    Context manager for adding fields to all logs within the block.

    Usage:
        with LogContext(request_id="abc", handler="generic"):
            logger.info("Processing")  # Includes request_id and handler
    """
    previous = _log_context.get().copy()
    try:
        new_context = previous.copy()
        new_context.update(kwargs)
        _log_context.set(new_context)
        yield
    finally:
        _log_context.set(previous)


# =============================================================================
# Timing Utilities
# =============================================================================


class Timer:
    """
    Context manager for timing code blocks.

    Usage:
        with Timer() as t:
            await orchestrator.run(events, metadata)
        logger.info("Invocation finished", extra={"duration_ms": t.elapsed_ms})
    """

    def __init__(self) -> None:
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.end_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds."""
        end = self.end_time or time.perf_counter()
        return round((end - self.start_time) * 1000, 2)
