"""
Stream Ingestors - Ingestion Stream Sessions

The remote sink is reached through the IngestionStream protocol; this module
binds streams to a StreamConfig and gives the orchestrator one owned session
per invocation.

Lifecycle:
- SessionManager.open(config)        -> IngestionSession (StreamOpenError on failure)
- IngestionSession.submit(payload)   -> ack handle (asyncio.Future)
- IngestionSession.flush()/close()   -> CloseError on failure
- IngestionSession.get_unacknowledged() after a failed close
- SessionManager.recreate(session)   -> fresh session from the same StreamConfig
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Protocol, Sequence, runtime_checkable

from .core.error_taxonomy import AckError, CloseError, StreamOpenError, SubmitError
from .schemas import TableSchema

logger = logging.getLogger(__name__)

DEFAULT_MAX_INFLIGHT_RECORDS = 1000


@runtime_checkable
class IngestionStream(Protocol):
    """An open write session to one destination table."""

    async def submit(self, record: bytes) -> Awaitable[Any]:
        """Send one record; the returned awaitable resolves on acknowledgment."""
        ...

    async def flush(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def get_unacknowledged(self) -> Sequence[bytes]:
        """Records submitted to this stream that were never acknowledged."""
        ...


class StreamFactory(Protocol):
    """Opens IngestionStreams (the sink SDK, or a fake in tests)."""

    async def create_stream(self, config: "StreamConfig") -> IngestionStream:
        ...


@dataclass(frozen=True)
class StreamCredentials:
    """OAuth client credential pair for the sink."""

    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class StreamConfig:
    """Everything needed to open a stream; reused verbatim for replacements."""

    table_name: str
    schema: TableSchema
    credentials: StreamCredentials
    max_inflight_records: int = DEFAULT_MAX_INFLIGHT_RECORDS

    def __post_init__(self) -> None:
        if self.max_inflight_records < 1:
            raise ValueError("max_inflight_records must be at least 1")


class IngestionSession:
    """
    One open stream bound to a StreamConfig.

    Owned by a single orchestrator run; never shared across invocations.
    """

    def __init__(self, config: StreamConfig, stream: IngestionStream) -> None:
        self.config = config
        self.session_id = uuid.uuid4().hex[:12]
        self._stream = stream
        self._closed = False

    def __repr__(self) -> str:
        return f"IngestionSession(id={self.session_id}, table={self.config.table_name})"

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, payload: bytes, identifier: str = "") -> "asyncio.Future[None]":
        """
        Submit one serialized record and return its ack handle.

        The handle resolves to None on acknowledgment or raises AckError.

        Raises:
            SubmitError: The stream refused the record outright.
        """
        try:
            ack = await self._stream.submit(payload)
        except Exception as exc:
            raise SubmitError(identifier, str(exc) or type(exc).__name__) from exc
        return asyncio.ensure_future(self._resolve(identifier, ack))

    @staticmethod
    async def _resolve(identifier: str, ack: Awaitable[Any]) -> None:
        try:
            await ack
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise AckError(identifier, str(exc) or type(exc).__name__) from exc

    async def flush(self) -> None:
        try:
            await self._stream.flush()
        except Exception as exc:
            raise CloseError(self.session_id, f"flush failed: {exc}") from exc

    async def close(self) -> None:
        """Flush pending writes and close the stream; a closed session is left as is."""
        if self._closed:
            return
        await self.flush()
        try:
            await self._stream.close()
        except Exception as exc:
            raise CloseError(self.session_id, str(exc) or type(exc).__name__) from exc
        self._closed = True
        logger.debug("Closed stream session %s", self.session_id)

    async def get_unacknowledged(self) -> list[bytes]:
        """Records never confirmed by the sink, de-duplicated, in submission order."""
        records = await self._stream.get_unacknowledged()
        return list(dict.fromkeys(bytes(record) for record in records))


class SessionManager:
    """Opens IngestionSessions from a StreamConfig through a StreamFactory."""

    def __init__(self, factory: StreamFactory) -> None:
        self._factory = factory

    async def open(self, config: StreamConfig) -> IngestionSession:
        """
        Open a session to ``config.table_name``.

        Raises:
            StreamOpenError: Authentication, table resolution or transport setup failed.
        """
        try:
            stream = await self._factory.create_stream(config)
        except StreamOpenError:
            raise
        except Exception as exc:
            raise StreamOpenError(config.table_name, str(exc) or type(exc).__name__) from exc

        session = IngestionSession(config, stream)
        logger.info(
            "Opened stream session %s to %s (max_inflight_records=%d)",
            session.session_id,
            config.table_name,
            config.max_inflight_records,
            extra={"session_id": session.session_id, "table_name": config.table_name},
        )
        return session

    async def recreate(self, session: IngestionSession) -> IngestionSession:
        """Open a replacement session with the failed session's configuration."""
        logger.info("Recreating stream session %s", session.session_id)
        return await self.open(session.config)
