"""
tests/conftest.py

Pytest configuration and shared fixtures for the stream ingestor test suite.

Every test starts with empty process caches (settings, runtime, event loop)
and the logging context cleared, so no state leaks between tests.
"""

from __future__ import annotations

from typing import Generator

import pytest

from handlers.runtime import reset_runtime
from ingestor.core.config import reset_settings
from ingestor.core.logging import clear_context
from ingestor.schemas import GENERIC_EVENTS, QUEUE_MESSAGES, TableSchema, resolve_schema

# =============================================================================
# GLOBAL TEST CONFIGURATION
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring a live Zerobus endpoint",
    )


@pytest.fixture(autouse=True)
def _reset_process_state() -> Generator[None, None, None]:
    reset_settings()
    reset_runtime()
    clear_context()
    yield
    reset_settings()
    reset_runtime()
    clear_context()


# =============================================================================
# SCHEMAS
# =============================================================================


@pytest.fixture
def generic_schema() -> TableSchema:
    return resolve_schema(*GENERIC_EVENTS)


@pytest.fixture
def queue_schema() -> TableSchema:
    return resolve_schema(*QUEUE_MESSAGES)
