"""
Stream Ingestors - Process Runtime

Process-wide state shared by warm Lambda invocations:
- validated Settings
- one SessionManager over the Zerobus SDK client
- resolved table schemas
- the event loop the SDK's channels are bound to

Everything is built once behind lru_cache guards and read-only afterwards.
``reset_runtime()`` exists for tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import lru_cache
from typing import Any, Coroutine, Optional, TypeVar

from ingestor.core.config import Settings, get_settings, log_startup_diagnostics
from ingestor.core.logging import configure_structured_logging
from ingestor.encoder import Clock, RecordEncoder
from ingestor.orchestrator import IngestionOrchestrator
from ingestor.schemas import SchemaRef, TableSchema, read_descriptor_set, resolve_schema
from ingestor.stream import SessionManager, StreamConfig, StreamCredentials, StreamFactory
from ingestor.zerobus_sink import ZerobusStreamFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IngestorRuntime:
    """Settings plus the session manager; hands out per-invocation orchestrators."""

    def __init__(self, settings: Settings, sessions: SessionManager):
        self.settings = settings
        self.sessions = sessions
        self._descriptor_set: Optional[bytes] = None
        if settings.DESCRIPTOR_SET_PATH:
            self._descriptor_set = read_descriptor_set(settings.DESCRIPTOR_SET_PATH)

    def schema(self, ref: SchemaRef) -> TableSchema:
        """Resolve a table schema; raises SchemaResolutionError when absent."""
        return resolve_schema(ref.file_name, ref.message_name, self._descriptor_set)

    def stream_config(self, ref: SchemaRef) -> StreamConfig:
        client_id, client_secret = self.settings.get_client_credentials()
        return StreamConfig(
            table_name=self.settings.table_name,
            schema=self.schema(ref),
            credentials=StreamCredentials(client_id, client_secret),
            max_inflight_records=self.settings.max_inflight_records,
        )

    def orchestrator(self, ref: SchemaRef, clock: Clock = time.time_ns) -> IngestionOrchestrator:
        config = self.stream_config(ref)
        return IngestionOrchestrator(
            self.sessions,
            config,
            RecordEncoder(config.schema, clock),
            deadline_margin_ms=self.settings.DEADLINE_MARGIN_MS,
        )


def build_runtime(settings: Settings, factory: Optional[StreamFactory] = None) -> IngestorRuntime:
    if factory is None:
        factory = ZerobusStreamFactory(settings.zerobus_endpoint, settings.databricks_host)
    return IngestorRuntime(settings, SessionManager(factory))


@lru_cache(maxsize=1)
def get_runtime() -> IngestorRuntime:
    """
    Build the process runtime on first use.

    Raises ConfigError on missing configuration; the failure is not cached.
    """
    settings = get_settings()
    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
        service_name=settings.SERVICE_NAME,
    )
    log_startup_diagnostics(settings.SERVICE_NAME, settings)
    return build_runtime(settings)


@lru_cache(maxsize=1)
def _event_loop() -> asyncio.AbstractEventLoop:
    return asyncio.new_event_loop()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` on the process event loop, reused across warm invocations."""
    return _event_loop().run_until_complete(coro)


def reset_runtime() -> None:
    """Drop cached runtime state (for testing)."""
    get_runtime.cache_clear()
    if _event_loop.cache_info().currsize:
        _event_loop().close()
    _event_loop.cache_clear()
