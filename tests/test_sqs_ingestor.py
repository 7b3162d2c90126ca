"""
Tests for handlers.sqs_ingestor

The SQS handler returns a partial batch response naming only messages that
were not acknowledged; only a stream that cannot be opened fails the whole
invocation.
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from handlers import sqs_ingestor
from handlers.runtime import build_runtime
from ingestor.core.error_taxonomy import EncodingError, StreamOpenError
from ingestor.schemas import QUEUE_MESSAGES, resolve_schema
from tests.helpers import FakeFactory, FakeLambdaContext, FakeStream, make_settings, make_sqs_record


def _event(*ids: str | None) -> dict:
    return {"Records": [make_sqs_record(message_id) for message_id in ids]}


def _runtime(factory: FakeFactory):
    return build_runtime(make_settings(), factory)


class TestLambdaHandler:
    def test_all_acknowledged(self):
        stream = FakeStream()
        runtime = _runtime(FakeFactory(stream))

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            response = sqs_ingestor.lambda_handler(_event("m1", "m2"), FakeLambdaContext())

        assert response == {"batchItemFailures": []}
        schema = resolve_schema(*QUEUE_MESSAGES)
        messages = [schema.message_class.FromString(record) for record in stream.submitted]
        assert [m.message_id for m in messages] == ["m1", "m2"]
        assert {m.queue_arn for m in messages} == {"arn:aws:sqs:us-east-1:123456789012:ingest-queue"}
        assert {m.aws_region for m in messages} == {"us-east-1"}

    def test_missing_message_id_is_reported(self):
        runtime = _runtime(FakeFactory())

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            response = sqs_ingestor.lambda_handler(_event("m1", "m2", None, "m4", "m5"), FakeLambdaContext())

        assert response == {"batchItemFailures": [{"itemIdentifier": ""}]}

    def test_non_object_record_is_per_item_failure(self):
        runtime = _runtime(FakeFactory())
        event = _event("m1")
        event["Records"].append("garbage")

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            response = sqs_ingestor.lambda_handler(event, FakeLambdaContext())

        assert response == {"batchItemFailures": [{"itemIdentifier": ""}]}

    def test_open_failure_raises(self):
        runtime = _runtime(FakeFactory(open_errors=[ConnectionError("no route")]))

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            with pytest.raises(StreamOpenError):
                sqs_ingestor.lambda_handler(_event("m1"), FakeLambdaContext())

    def test_deadline_inside_margin_still_returns_response(self):
        factory = FakeFactory()
        runtime = _runtime(factory)

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            response = sqs_ingestor.lambda_handler(_event("m1", "m2"), FakeLambdaContext(remaining_ms=300))

        assert response == {"batchItemFailures": [{"itemIdentifier": "m1"}, {"itemIdentifier": "m2"}]}
        assert factory.configs == []

    def test_non_object_event_is_rejected(self):
        with patch.object(sqs_ingestor, "get_runtime", side_effect=AssertionError("should not open")):
            with pytest.raises(EncodingError, match="JSON object"):
                sqs_ingestor.lambda_handler([make_sqs_record("m1")], FakeLambdaContext())

    def test_records_must_be_a_list(self):
        with patch.object(sqs_ingestor, "get_runtime", side_effect=AssertionError("should not open")):
            with pytest.raises(EncodingError, match="must be a list"):
                sqs_ingestor.lambda_handler({"Records": "m1"}, FakeLambdaContext())

    def test_recovery_failure_is_folded_into_response(self, caplog):
        stream = FakeStream(
            close_error=ConnectionResetError("reset"),
            unacked_error=RuntimeError("state lost"),
        )
        runtime = _runtime(FakeFactory(stream))

        with patch.object(sqs_ingestor, "get_runtime", return_value=runtime):
            with caplog.at_level(logging.ERROR):
                response = sqs_ingestor.lambda_handler(_event("m1", "m2"), FakeLambdaContext())

        # both records were acknowledged before the close failed
        assert response == {"batchItemFailures": []}
        assert "ING-RECOVERY-400" in caplog.text

    def test_empty_batch_skips_the_stream(self):
        with patch.object(sqs_ingestor, "get_runtime", side_effect=AssertionError("should not open")):
            assert sqs_ingestor.lambda_handler({"Records": []}, FakeLambdaContext()) == {"batchItemFailures": []}
