"""
Stream Ingestors - Zerobus Sink Adapter

Adapts the Databricks Zerobus ingest SDK (``databricks-zerobus-ingest-sdk``,
installed with the ``zerobus`` extra) to the IngestionStream protocol.

The SDK is imported on first use so the core package and its tests do not
require it.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Sequence

from .schemas import TableSchema
from .stream import StreamConfig

logger = logging.getLogger(__name__)


def _load_sdk() -> tuple[Any, Any, Any]:
    """Return (ZerobusSdk, TableProperties, StreamConfigurationOptions)."""
    from zerobus.sdk.aio import ZerobusSdk
    from zerobus.sdk.shared import StreamConfigurationOptions, TableProperties

    return ZerobusSdk, TableProperties, StreamConfigurationOptions


def _as_bytes(record: Any) -> bytes:
    if isinstance(record, (bytes, bytearray, memoryview)):
        return bytes(record)
    return record.SerializeToString(deterministic=True)


class ZerobusStream:
    """IngestionStream over one SDK stream; records travel as schema messages."""

    def __init__(self, stream: Any, schema: TableSchema):
        self._stream = stream
        self._schema = schema

    async def submit(self, record: bytes) -> Awaitable[Any]:
        message = self._schema.message_class.FromString(record)
        return await self._stream.ingest_record(message)

    async def flush(self) -> None:
        await self._stream.flush()

    async def close(self) -> None:
        await self._stream.close()

    async def get_unacknowledged(self) -> Sequence[bytes]:
        records = await self._stream.get_unacked_records()
        return [_as_bytes(record) for record in records]


class ZerobusStreamFactory:
    """StreamFactory backed by a single process-wide ZerobusSdk client."""

    def __init__(self, endpoint: str, workspace_url: str, sdk: Any = None):
        self.endpoint = endpoint
        self.workspace_url = workspace_url
        self._sdk = sdk

    @property
    def sdk(self) -> Any:
        if self._sdk is None:
            sdk_class, _, _ = _load_sdk()
            self._sdk = sdk_class(self.endpoint, self.workspace_url)
            logger.info("Initialized Zerobus SDK for %s", self.endpoint)
        return self._sdk

    async def create_stream(self, config: StreamConfig) -> ZerobusStream:
        _, table_properties, options_class = _load_sdk()
        stream = await self.sdk.create_stream(
            config.credentials.client_id,
            config.credentials.client_secret,
            table_properties(config.table_name, config.schema.descriptor),
            options_class(max_inflight_records=config.max_inflight_records),
        )
        return ZerobusStream(stream, config.schema)
