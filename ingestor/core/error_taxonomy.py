"""
Stream Ingestors - Error Taxonomy

Structured error classification for observability and incident response.
Every ingestor exception carries a stable error_code that can be:
- Aggregated in logs/metrics
- Used for alerting rules (e.g. RECOVERY errors page, CLOSE errors do not)
- Referenced in runbooks

Error Code Format: ING-{CATEGORY}-{NUMBER}
- CONFIG (001-099): Startup configuration and schema resolution
- ENCODING (100-199): Malformed individual events (per-item)
- RECORD (200-299): Sink rejected or failed to acknowledge a record (per-item)
- STREAM (300-399): Stream open / close failures (per-invocation)
- RECOVERY (400-499): Recovery of an unacknowledged backlog failed
- DEADLINE (500-599): Invocation execution window exhausted
- INTERNAL (900-999): Unexpected internal errors
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCategory(str, Enum):
    """Error category for classification."""

    CONFIG = "CONFIG"
    ENCODING = "ENCODING"
    RECORD = "RECORD"
    STREAM = "STREAM"
    RECOVERY = "RECOVERY"
    DEADLINE = "DEADLINE"
    INTERNAL = "INTERNAL"


@dataclass(frozen=True)
class ErrorCode:
    """Immutable error code definition."""

    code: str
    category: ErrorCategory
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return self.code


ERR_CONFIG_MISSING_ENV = ErrorCode(
    code="ING-CONFIG-001",
    category=ErrorCategory.CONFIG,
    message="Required configuration is missing or invalid",
)
ERR_CONFIG_SCHEMA = ErrorCode(
    code="ING-CONFIG-010",
    category=ErrorCategory.CONFIG,
    message="Schema descriptor could not be resolved",
)
ERR_ENCODING = ErrorCode(
    code="ING-ENCODING-100",
    category=ErrorCategory.ENCODING,
    message="Event could not be encoded into a record",
)
ERR_RECORD_SUBMIT = ErrorCode(
    code="ING-RECORD-200",
    category=ErrorCategory.RECORD,
    message="Record submission was rejected",
    retryable=True,
)
ERR_RECORD_ACK = ErrorCode(
    code="ING-RECORD-201",
    category=ErrorCategory.RECORD,
    message="Record was not acknowledged by the sink",
    retryable=True,
)
ERR_STREAM_OPEN = ErrorCode(
    code="ING-STREAM-300",
    category=ErrorCategory.STREAM,
    message="Ingestion stream could not be opened",
    retryable=True,
)
ERR_STREAM_CLOSE = ErrorCode(
    code="ING-STREAM-310",
    category=ErrorCategory.STREAM,
    message="Ingestion stream failed to close cleanly",
    retryable=True,
)
ERR_RECOVERY = ErrorCode(
    code="ING-RECOVERY-400",
    category=ErrorCategory.RECOVERY,
    message="Recovery of unacknowledged records failed",
    retryable=True,
)
ERR_DEADLINE = ErrorCode(
    code="ING-DEADLINE-500",
    category=ErrorCategory.DEADLINE,
    message="Invocation deadline reached before the stream closed",
    retryable=True,
)
ERR_INTERNAL_UNKNOWN = ErrorCode(
    code="ING-INTERNAL-900",
    category=ErrorCategory.INTERNAL,
    message="Unknown internal error",
)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class IngestorError(Exception):
    """Base exception for ingestor errors."""

    error_code: ErrorCode = ERR_INTERNAL_UNKNOWN

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.error_code}] {message}")


class ConfigError(IngestorError):
    """Startup configuration is missing or invalid. Fatal before ingestion starts."""

    error_code = ERR_CONFIG_MISSING_ENV

    def __init__(self, message: str, missing: Sequence[str] = ()):
        self.missing = list(missing)
        super().__init__(message)


class SchemaResolutionError(ConfigError):
    """The compiled descriptor set has no matching file or message."""

    error_code = ERR_CONFIG_SCHEMA

    def __init__(self, file_name: str, message_name: str | None = None):
        self.file_name = file_name
        self.message_name = message_name
        if message_name is None:
            detail = f"File descriptor '{file_name}' not found"
        else:
            detail = f"Message descriptor '{message_name}' not found in '{file_name}'"
        super().__init__(detail)


class EncodingError(IngestorError):
    """A single event could not be encoded. Per-item failure."""

    error_code = ERR_ENCODING

    def __init__(self, message: str, identifier: str = ""):
        self.identifier = identifier
        super().__init__(message)


class SubmitError(IngestorError):
    """The stream refused a record at submission. Per-item failure."""

    error_code = ERR_RECORD_SUBMIT

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Record '{identifier}' was rejected on submit: {reason}")


class AckError(IngestorError):
    """A submitted record resolved with a failure. Per-item failure."""

    error_code = ERR_RECORD_ACK

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Record '{identifier}' was not acknowledged: {reason}")


class StreamOpenError(IngestorError):
    """Authentication, table resolution or transport setup failed."""

    error_code = ERR_STREAM_OPEN

    def __init__(self, table_name: str, reason: str):
        self.table_name = table_name
        self.reason = reason
        super().__init__(f"Failed to open stream to '{table_name}': {reason}")


class CloseError(IngestorError):
    """
    The stream failed to flush or close.

    After recovery ran, ``recovery`` holds its report; the error is still the
    invocation result so the trigger's own redelivery policy applies.
    """

    error_code = ERR_STREAM_CLOSE

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        self.recovery: Any = None
        super().__init__(f"Failed to close stream session {session_id}: {reason}")


class RecoveryError(IngestorError):
    """
    Recovery after a close failure did not complete.

    Distinct from CloseError: records may have been lost. ``failed_records``
    lists the serialized records that were not confirmed by the replacement.
    """

    error_code = ERR_RECOVERY

    def __init__(
        self,
        stage: str,
        reason: str,
        close_error: CloseError | None = None,
        failed_records: Sequence[bytes] = (),
    ):
        self.stage = stage
        self.reason = reason
        self.close_error = close_error
        self.failed_records = list(failed_records)
        super().__init__(f"Recovery failed during {stage}: {reason}")


class DeadlineExceededError(IngestorError):
    """The invocation deadline passed; the in-progress session was abandoned."""

    error_code = ERR_DEADLINE

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Invocation deadline reached while {stage}")


# =============================================================================
# STRUCTURED ERROR
# =============================================================================


@dataclass
class StructuredError:
    """
    Structured error for logging and reporting.

    Captures all relevant context for incident response.
    """

    error_code: ErrorCode
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] = field(default_factory=dict)
    original_exception: BaseException | None = None
    traceback_str: str | None = None

    def __post_init__(self):
        if self.original_exception and not self.traceback_str:
            self.traceback_str = "".join(
                traceback.format_exception(
                    type(self.original_exception),
                    self.original_exception,
                    self.original_exception.__traceback__,
                )
            )

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dict suitable for structured logging."""
        return {
            "error_code": str(self.error_code),
            "error_category": self.error_code.category.value,
            "error_message": self.message,
            "retryable": self.error_code.retryable,
            "timestamp": self.timestamp.isoformat(),
            **self.context,
        }

    def log(self, level: int = logging.ERROR) -> None:
        """Log this error with structured context."""
        logger.log(
            level,
            "[%s] %s",
            self.error_code,
            self.message,
            extra=self.to_log_dict(),
            exc_info=self.original_exception,
        )


# =============================================================================
# ERROR CLASSIFIER
# =============================================================================


def classify_exception(exc: BaseException, context: dict[str, Any] | None = None) -> StructuredError:
    """
    Classify an exception into a structured error.

    Ingestor exceptions carry their own code; anything else is INTERNAL.
    """
    context = context or {}
    if isinstance(exc, IngestorError):
        error_code = exc.error_code
        message = exc.message
    else:
        error_code = ERR_INTERNAL_UNKNOWN
        message = str(exc)

    return StructuredError(
        error_code=error_code,
        message=message,
        context={"exception_type": type(exc).__name__, **context},
        original_exception=exc,
    )


def log_classified_error(
    exc: BaseException,
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> StructuredError:
    """Classify and log an exception in one call."""
    structured = classify_exception(exc, context)
    structured.log(level)
    return structured
