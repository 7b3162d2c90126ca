"""
Stream Ingestors - Core Module

Configuration, structured logging, error taxonomy and payload models.
"""

from .config import Settings, get_settings, load_settings, reset_settings
from .error_taxonomy import (
    AckError,
    CloseError,
    ConfigError,
    DeadlineExceededError,
    EncodingError,
    IngestorError,
    RecoveryError,
    SchemaResolutionError,
    StreamOpenError,
    SubmitError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
    # Errors
    "IngestorError",
    "ConfigError",
    "SchemaResolutionError",
    "EncodingError",
    "SubmitError",
    "AckError",
    "StreamOpenError",
    "CloseError",
    "RecoveryError",
    "DeadlineExceededError",
]
