"""
tests/helpers.py

In-memory stand-ins for the ingestion sink and the Lambda runtime.

FakeStream implements the IngestionStream protocol with scriptable failures:
rejected submits, failed acks, held acks, flush/close failures and a custom
unacknowledged set. It also records the highest number of unresolved acks
seen at once, so tests can check the in-flight bound from the sink's side.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Iterable, Optional, Sequence
from unittest.mock import patch

from ingestor.core.config import Settings
from ingestor.schemas import TableSchema
from ingestor.stream import StreamConfig, StreamCredentials

TEST_ENV = {
    "TABLE_NAME": "main.ingest.events",
    "ZEROBUS_ENDPOINT": "https://1234.zerobus.us-west-2.cloud.databricks.com",
    "DATABRICKS_HOST": "https://dbc-1234.cloud.databricks.com",
    "DATABRICKS_CLIENT_ID": "client-id",
    "DATABRICKS_CLIENT_SECRET": "client-secret-value",
}


class FakeStream:
    """Scriptable IngestionStream."""

    def __init__(
        self,
        *,
        reject: Iterable[bytes] = (),
        fail_acks: Iterable[bytes] = (),
        hold_acks: bool = False,
        ack_delay: Optional[Callable[[int], float]] = None,
        flush_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
        unacked: Optional[Sequence[bytes]] = None,
        unacked_error: Optional[Exception] = None,
    ):
        self.reject = set(reject)
        self.fail_acks = set(fail_acks)
        self.hold_acks = hold_acks
        self.ack_delay = ack_delay
        self.flush_error = flush_error
        self.close_error = close_error
        self.unacked = unacked
        self.unacked_error = unacked_error

        self.submitted: list[bytes] = []
        self.acked: list[bytes] = []
        self.outstanding = 0
        self.max_outstanding = 0
        self.flush_calls = 0
        self.closed = False
        self.unacked_calls = 0
        self._held: list[tuple[asyncio.Future, bytes]] = []

    async def submit(self, record: bytes) -> asyncio.Future:
        if record in self.reject:
            raise RuntimeError("record rejected by sink")
        loop = asyncio.get_running_loop()
        ack: asyncio.Future = loop.create_future()
        self.submitted.append(record)
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        ack.add_done_callback(self._on_done)

        if self.hold_acks:
            self._held.append((ack, record))
        else:
            delay = self.ack_delay(len(self.submitted) - 1) if self.ack_delay else 0
            loop.call_later(delay, self._resolve, ack, record)
        return ack

    def release(self) -> None:
        """Resolve every held ack."""
        held, self._held = self._held, []
        for ack, record in held:
            self._resolve(ack, record)

    def _resolve(self, ack: asyncio.Future, record: bytes) -> None:
        if ack.done():
            return
        if record in self.fail_acks:
            ack.set_exception(RuntimeError("ack failed"))
        else:
            self.acked.append(record)
            ack.set_result(None)

    def _on_done(self, _: asyncio.Future) -> None:
        self.outstanding -= 1

    async def flush(self) -> None:
        self.flush_calls += 1
        if self.flush_error is not None:
            raise self.flush_error

    async def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True

    async def get_unacknowledged(self) -> list[bytes]:
        self.unacked_calls += 1
        if self.unacked_error is not None:
            raise self.unacked_error
        if self.unacked is not None:
            return list(self.unacked)
        return [record for record in self.submitted if record not in self.acked]


class FakeFactory:
    """
    StreamFactory handing out FakeStreams in order.

    ``open_errors`` is consumed one entry per open; None means "open normally".
    """

    def __init__(self, *streams: FakeStream, open_errors: Sequence[Optional[Exception]] = ()):
        self._streams = list(streams)
        self._open_errors = list(open_errors)
        self.configs: list[StreamConfig] = []
        self.opened: list[FakeStream] = []

    async def create_stream(self, config: StreamConfig) -> FakeStream:
        self.configs.append(config)
        if self._open_errors:
            error = self._open_errors.pop(0)
            if error is not None:
                raise error
        stream = self._streams.pop(0) if self._streams else FakeStream()
        self.opened.append(stream)
        return stream


class FakeLambdaContext:
    """Subset of the Lambda context object the handlers read."""

    function_name = "stream-ingestor-test"
    function_version = "$LATEST"
    invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:stream-ingestor-test"
    memory_limit_in_mb = 256
    log_group_name = "/aws/lambda/stream-ingestor-test"
    log_stream_name = "2026/10/17/[$LATEST]abc"
    client_context = None
    identity = None

    def __init__(self, request_id: str = "req-123", remaining_ms: int = 30_000):
        self.aws_request_id = request_id
        self._remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self) -> int:
        return self._remaining_ms


def make_settings(**overrides: Any) -> Settings:
    """Settings from TEST_ENV plus overrides, isolated from the real environment."""
    values = {**TEST_ENV, **overrides}
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, **values)


def make_config(schema: TableSchema, max_inflight_records: int = 1000) -> StreamConfig:
    return StreamConfig(
        table_name=TEST_ENV["TABLE_NAME"],
        schema=schema,
        credentials=StreamCredentials("client-id", "client-secret-value"),
        max_inflight_records=max_inflight_records,
    )


def make_sqs_record(message_id: Optional[str], body: str = "hello", **extra: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "receiptHandle": f"handle-{message_id}",
        "body": body,
        "attributes": {"ApproximateReceiveCount": "1", "SentTimestamp": "1700000000000"},
        "messageAttributes": {},
        "md5OfBody": "5d41402abc4b2a76b9719d911017c592",
        "eventSource": "aws:sqs",
        "eventSourceARN": "arn:aws:sqs:us-east-1:123456789012:ingest-queue",
        "awsRegion": "us-east-1",
    }
    if message_id is not None:
        record["messageId"] = message_id
    record.update(extra)
    return record


def fixed_clock(now_ns: int = 1_700_000_000_123_456_789) -> Callable[[], int]:
    return lambda: now_ns
