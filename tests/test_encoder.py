"""
Tests for ingestor.encoder

Covers both event variants, timestamp derivation from a single clock read,
determinism and the per-item EncodingError cases.
"""

from __future__ import annotations

import base64
import json
import logging
from unittest.mock import MagicMock

import pytest

from ingestor.core.error_taxonomy import EncodingError
from ingestor.core.models import GenericPayload, InvocationMetadata, QueueMessage, QueueSource
from ingestor.encoder import RecordEncoder, ingestion_timestamps
from tests.helpers import fixed_clock, make_sqs_record

NOW_NS = 1_700_000_000_123_456_789


@pytest.fixture
def metadata() -> InvocationMetadata:
    return InvocationMetadata(
        request_id="req-1",
        deadline_ms=1_700_000_030_000,
        context={"function_name": "ingest"},
        source=QueueSource(queue_arn="arn:aws:sqs:us-east-1:1:q", aws_region="us-east-1"),
    )


class TestIngestionTimestamps:
    def test_microseconds_and_days(self):
        ingested_at, ingested_date = ingestion_timestamps(NOW_NS)

        assert ingested_at == 1_700_000_000_123_456
        assert ingested_date == 19675
        assert ingested_date == (ingested_at // 1_000_000) // 86_400

    def test_day_boundary(self):
        one_day_ns = 86_400 * 1_000_000_000
        assert ingestion_timestamps(one_day_ns - 1)[1] == 0
        assert ingestion_timestamps(one_day_ns)[1] == 1


class TestGenericPayload:
    def test_fields(self, generic_schema, metadata):
        encoder = RecordEncoder(generic_schema, clock=fixed_clock(NOW_NS))
        record = encoder.encode(GenericPayload(payload={"b": 2, "a": [1, "x"]}), metadata)

        message = generic_schema.message_class.FromString(record.payload)
        assert record.identifier == "req-1"
        assert message.request_id == "req-1"
        assert json.loads(message.payload) == {"b": 2, "a": [1, "x"]}
        assert message.payload == '{"b":2,"a":[1,"x"]}'
        assert json.loads(message.context) == {"function_name": "ingest"}
        assert message.deadline == 1_700_000_030_000
        assert message.ingested_at == record.ingested_at == 1_700_000_000_123_456
        assert message.ingested_date == record.ingested_date == 19675

    def test_clock_read_once(self, generic_schema, metadata):
        clock = MagicMock(return_value=NOW_NS)
        RecordEncoder(generic_schema, clock=clock).encode(GenericPayload(payload=1), metadata)
        assert clock.call_count == 1

    def test_deterministic(self, generic_schema, metadata):
        encoder = RecordEncoder(generic_schema, clock=fixed_clock(NOW_NS))
        event = GenericPayload(payload={"k": "v"})
        assert encoder.encode(event, metadata) == encoder.encode(event, metadata)

    def test_non_json_payload_is_encoding_error(self, generic_schema, metadata):
        encoder = RecordEncoder(generic_schema, clock=fixed_clock(NOW_NS))
        with pytest.raises(EncodingError) as exc_info:
            encoder.encode(GenericPayload(payload={"n": float("nan")}), metadata)
        assert exc_info.value.identifier == "req-1"

    def test_missing_deadline_leaves_field_unset(self, generic_schema):
        encoder = RecordEncoder(generic_schema, clock=fixed_clock(NOW_NS))
        record = encoder.encode(GenericPayload(payload=None), InvocationMetadata(request_id="r"))

        message = generic_schema.message_class.FromString(record.payload)
        assert not message.HasField("deadline")
        assert message.payload == "null"


class TestQueueMessage:
    def test_fields(self, queue_schema, metadata):
        raw = make_sqs_record(
            "m-1",
            body="hello",
            messageAttributes={
                "trace": {"stringValue": "abc", "dataType": "String"},
                "blob": {"binaryValue": base64.b64encode(b"\x00\x01").decode(), "dataType": "Binary"},
                "list": {"stringListValues": ["a", "b"], "binaryListValues": [base64.b64encode(b"z").decode()]},
            },
        )
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))
        record = encoder.encode(QueueMessage.from_record(raw), metadata)

        message = queue_schema.message_class.FromString(record.payload)
        assert record.identifier == "m-1"
        assert message.message_id == "m-1"
        assert message.receipt_handle == "handle-m-1"
        assert message.body == "hello"
        assert message.md5_of_body == raw["md5OfBody"]
        assert message.md5_of_message_attributes == ""
        assert dict(message.attributes) == raw["attributes"]
        assert message.message_attributes["trace"].string_value == "abc"
        assert message.message_attributes["trace"].data_type == "String"
        assert message.message_attributes["blob"].binary_value == b"\x00\x01"
        assert list(message.message_attributes["list"].string_list_values) == ["a", "b"]
        assert list(message.message_attributes["list"].binary_list_values) == [b"z"]
        assert message.queue_arn == "arn:aws:sqs:us-east-1:1:q"
        assert message.aws_region == "us-east-1"

    def test_invalid_base64_becomes_empty_bytes(self, queue_schema, metadata, caplog):
        raw = make_sqs_record("m-1", messageAttributes={"blob": {"binaryValue": "!!not-base64!!"}})
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))

        with caplog.at_level(logging.WARNING, logger="ingestor.encoder"):
            record = encoder.encode(QueueMessage.from_record(raw), metadata)

        message = queue_schema.message_class.FromString(record.payload)
        assert message.message_attributes["blob"].binary_value == b""
        assert "invalid base64" in caplog.text

    def test_missing_message_id(self, queue_schema, metadata):
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))
        with pytest.raises(EncodingError, match="Message ID is required"):
            encoder.encode(QueueMessage.from_record(make_sqs_record(None)), metadata)

    def test_missing_receipt_handle(self, queue_schema, metadata):
        raw = make_sqs_record("m-1")
        del raw["receiptHandle"]
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))

        with pytest.raises(EncodingError, match="Receipt handle is required") as exc_info:
            encoder.encode(QueueMessage.from_record(raw), metadata)
        assert exc_info.value.identifier == "m-1"

    def test_malformed_record(self, queue_schema, metadata):
        raw = make_sqs_record("m-1", attributes="not-a-map")
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))

        with pytest.raises(EncodingError, match="Malformed queue message") as exc_info:
            encoder.encode(QueueMessage.from_record(raw), metadata)
        assert exc_info.value.identifier == "m-1"

    def test_deterministic_with_maps(self, queue_schema, metadata):
        raw = make_sqs_record("m-1", attributes={f"k{i}": str(i) for i in range(20)})
        encoder = RecordEncoder(queue_schema, clock=fixed_clock(NOW_NS))
        event = QueueMessage.from_record(raw)
        assert encoder.encode(event, metadata).payload == encoder.encode(event, metadata).payload


def test_unknown_event_type(generic_schema, metadata):
    with pytest.raises(TypeError):
        RecordEncoder(generic_schema).encode({"raw": "dict"}, metadata)
