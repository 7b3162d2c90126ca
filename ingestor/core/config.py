"""
Stream Ingestors - Unified Configuration

ENVIRONMENT VARIABLE CONTRACT
=============================

This module is the single source of truth for ingestor configuration.
Both Lambda entrypoints (handlers/) and the local CLI (tools/) use this loader.

Required:
  TABLE_NAME                    - Destination table (catalog.schema.table)
  ZEROBUS_ENDPOINT              - Zerobus ingestion endpoint
  DATABRICKS_HOST               - Workspace URL used for token exchange
  DATABRICKS_CLIENT_ID          - Service principal client id
  DATABRICKS_CLIENT_SECRET      - Service principal client secret

Optional:
  MAX_INFLIGHT_RECORDS          - Outstanding unacknowledged records per stream (default: 1000)
  DEADLINE_MARGIN_MS            - Time reserved before the Lambda deadline for abandoning
                                  the session and reporting (default: 500)
  LOG_LEVEL                     - DEBUG | INFO | WARNING | ERROR (default: INFO)
  LOG_JSON                      - JSON log lines (default: true, CloudWatch friendly)
  SERVICE_NAME                  - Tag attached to every log line
  DESCRIPTOR_SET_PATH           - Serialized FileDescriptorSet overriding the embedded one

FAIL-FAST BEHAVIOR:
-------------------
Missing required variables raise ConfigError before any stream is opened:

  ConfigError: [ING-CONFIG-001] Missing required environment variables: TABLE_NAME

Usage:
------
    from ingestor.core.config import get_settings

    settings = get_settings()
    print(settings.table_name)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .error_taxonomy import ConfigError

logger = logging.getLogger(__name__)

# Keys whose values are credentials or endpoints: internal whitespace is removed
_SANITIZED_KEYS = {
    "ZEROBUS_ENDPOINT",
    "DATABRICKS_HOST",
    "DATABRICKS_CLIENT_ID",
    "DATABRICKS_CLIENT_SECRET",
}

_SECRET_FIELDS = {"DATABRICKS_CLIENT_SECRET"}


class Settings(BaseSettings):
    """
    Ingestor settings loaded from the environment.

    A local env file can be selected with ENV_FILE (defaults to .env); Lambda
    deployments rely on function environment variables only.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # DESTINATION & SINK
    # =========================================================================

    TABLE_NAME: str = Field(..., min_length=1, description="Destination table name")
    ZEROBUS_ENDPOINT: str = Field(..., min_length=1, description="Zerobus ingestion endpoint")
    DATABRICKS_HOST: str = Field(..., min_length=1, description="Databricks workspace URL")

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    DATABRICKS_CLIENT_ID: str = Field(..., min_length=1, description="OAuth client id")
    DATABRICKS_CLIENT_SECRET: str = Field(..., min_length=1, description="OAuth client secret")

    # =========================================================================
    # STREAM TUNING
    # =========================================================================

    MAX_INFLIGHT_RECORDS: int = Field(
        default=1000,
        ge=1,
        description="Maximum submitted-but-unacknowledged records per stream",
    )
    DEADLINE_MARGIN_MS: int = Field(
        default=500,
        ge=0,
        description="Milliseconds reserved before the Lambda deadline to abandon and report",
    )
    DESCRIPTOR_SET_PATH: str | None = Field(
        default=None,
        description="Path to a serialized FileDescriptorSet overriding the embedded schemas",
    )

    # =========================================================================
    # LOGGING
    # =========================================================================

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    LOG_JSON: bool = Field(default=True, description="Emit JSON log lines")
    SERVICE_NAME: str = Field(default="stream-ingestor", description="Service tag for logs")

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip whitespace and stray quotes from string values."""
        for key, value in list(values.items()):
            if not isinstance(value, str):
                continue
            cleaned = value.strip().strip('"').strip("'").strip()
            if key.upper() in _SANITIZED_KEYS:
                original = cleaned
                cleaned = cleaned.replace("\n", "").replace("\r", "").replace("\t", "")
                if cleaned != original:
                    logger.warning(
                        "Sanitized %s: removed internal whitespace (original length=%d, cleaned=%d)",
                        key.upper(),
                        len(original),
                        len(cleaned),
                    )
            if key.upper() == "LOG_LEVEL":
                cleaned = cleaned.upper()
            values[key] = cleaned
        return values

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def table_name(self) -> str:
        return self.TABLE_NAME

    @property
    def zerobus_endpoint(self) -> str:
        return self.ZEROBUS_ENDPOINT

    @property
    def databricks_host(self) -> str:
        return self.DATABRICKS_HOST

    @property
    def max_inflight_records(self) -> int:
        return self.MAX_INFLIGHT_RECORDS

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    def get_client_credentials(self) -> tuple[str, str]:
        """Return the (client_id, client_secret) pair."""
        return self.DATABRICKS_CLIENT_ID, self.DATABRICKS_CLIENT_SECRET


def _config_error_from(exc: ValidationError) -> ConfigError:
    missing: list[str] = []
    invalid: list[str] = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error.get("loc", ())) or "<settings>"
        if error.get("type") == "missing":
            missing.append(name)
        else:
            invalid.append(f"{name} ({error.get('msg')})")
    parts = []
    if missing:
        parts.append(f"Missing required environment variables: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid environment variables: {', '.join(invalid)}")
    return ConfigError("; ".join(parts) or str(exc), missing=missing)


def load_settings(**overrides: Any) -> Settings:
    """Build a Settings instance, translating validation failures into ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise _config_error_from(exc) from exc


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache so the environment is read once per process. A ConfigError
    is not cached; the next call retries.
    """
    return load_settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# DIAGNOSTIC HELPERS
# =========================================================================


def print_effective_config(settings: Settings | None = None, redact_secrets: bool = True) -> dict[str, Any]:
    """
    Return the effective configuration (for diagnostics).

    Args:
        settings: Settings to render; defaults to get_settings()
        redact_secrets: If True, redact credential values

    Returns:
        Dict of effective configuration values
    """
    if settings is None:
        settings = get_settings()

    config: dict[str, Any] = {}
    for field_name in type(settings).model_fields:
        value = getattr(settings, field_name, None)
        if redact_secrets and field_name in _SECRET_FIELDS:
            config[field_name] = f"***SET*** (len={len(str(value))})" if value else None
        else:
            config[field_name] = value
    return config


def log_startup_diagnostics(service_name: str, settings: Settings | None = None) -> None:
    """
    Log safe startup diagnostics for an ingestor entrypoint.

    Args:
        service_name: Human-readable name of the entrypoint (e.g. 'sqs-ingestor')
        settings: Settings to describe; defaults to get_settings()
    """
    cfg = settings or get_settings()
    logger.info("=" * 60)
    logger.info("SERVICE STARTUP: %s", service_name)
    logger.info("=" * 60)
    logger.info("  Table           : %s", cfg.TABLE_NAME)
    logger.info("  Endpoint        : %s", cfg.ZEROBUS_ENDPOINT)
    logger.info("  Workspace       : %s", cfg.DATABRICKS_HOST)
    logger.info("  Max in-flight   : %d", cfg.MAX_INFLIGHT_RECORDS)
    logger.info("  Deadline margin : %d ms", cfg.DEADLINE_MARGIN_MS)
    logger.info("  Descriptor set  : %s", cfg.DESCRIPTOR_SET_PATH or "embedded")
    logger.info("=" * 60)
