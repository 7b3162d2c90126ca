"""
Stream Ingestors - Trigger Payload Models

Pydantic models for the payload shapes the entrypoints consume and produce:
- Generic invocation: any JSON value plus the invocation metadata
- SQS batch: {"Records": [...]} with one SqsMessage per record
- SQS partial-failure response

Queue messages are validated one at a time so a single malformed record is a
per-item failure instead of rejecting the whole batch.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# =============================================================================
# Invocation metadata
# =============================================================================


class QueueSource(BaseModel):
    """Source queue identity shared by every message of one batch."""

    model_config = ConfigDict(frozen=True)

    queue_arn: str = ""
    aws_region: str = ""


class InvocationMetadata(BaseModel):
    """Request identity, deadline and arrival context of one invocation."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    deadline_ms: Optional[int] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[QueueSource] = None

    @property
    def context_json(self) -> str:
        """Compact JSON rendering of the arrival context."""
        return json.dumps(self.context, separators=(",", ":"), default=str)

    @classmethod
    def from_lambda_context(
        cls,
        context: Any,
        source: Optional[QueueSource] = None,
        now_ms: Optional[int] = None,
    ) -> "InvocationMetadata":
        """
        Build metadata from an AWS Lambda context object.

        The deadline is derived from get_remaining_time_in_millis() at arrival.
        Local invocations pass context=None and get a generated request id.
        """
        if context is None:
            return cls(request_id=str(uuid.uuid4()), source=source)

        if now_ms is None:
            now_ms = time.time_ns() // 1_000_000
        deadline_ms: Optional[int] = None
        remaining = getattr(context, "get_remaining_time_in_millis", None)
        if callable(remaining):
            deadline_ms = now_ms + int(remaining())

        request_id = str(getattr(context, "aws_request_id", "") or uuid.uuid4())
        snapshot = {
            "request_id": request_id,
            "deadline": deadline_ms,
            "invoked_function_arn": getattr(context, "invoked_function_arn", None),
            "function_name": getattr(context, "function_name", None),
            "function_version": getattr(context, "function_version", None),
            "memory_limit_in_mb": getattr(context, "memory_limit_in_mb", None),
            "log_group_name": getattr(context, "log_group_name", None),
            "log_stream_name": getattr(context, "log_stream_name", None),
            "client_context": _as_plain(getattr(context, "client_context", None)),
            "identity": _as_plain(getattr(context, "identity", None)),
        }
        return cls(request_id=request_id, deadline_ms=deadline_ms, context=snapshot, source=source)


def _as_plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, dict, list)):
        return value
    if hasattr(value, "__dict__"):
        return {key: val for key, val in vars(value).items() if not key.startswith("_")}
    return str(value)


# =============================================================================
# Inbound events
# =============================================================================


class GenericPayload(BaseModel):
    """An arbitrary JSON-like invocation payload."""

    model_config = ConfigDict(frozen=True)

    payload: Any = None


class SqsMessageAttribute(BaseModel):
    """A user-defined SQS message attribute; binary values are base64 text."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    string_value: Optional[str] = Field(default=None, alias="stringValue")
    binary_value: Optional[str] = Field(default=None, alias="binaryValue")
    string_list_values: List[str] = Field(default_factory=list, alias="stringListValues")
    binary_list_values: List[str] = Field(default_factory=list, alias="binaryListValues")
    data_type: Optional[str] = Field(default=None, alias="dataType")


class QueueMessage(BaseModel):
    """One SQS record as delivered in an event-source-mapping batch."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    message_id: Optional[str] = Field(default=None, alias="messageId")
    receipt_handle: Optional[str] = Field(default=None, alias="receiptHandle")
    body: Optional[str] = None
    md5_of_body: Optional[str] = Field(default=None, alias="md5OfBody")
    md5_of_message_attributes: Optional[str] = Field(default=None, alias="md5OfMessageAttributes")
    attributes: Dict[str, str] = Field(default_factory=dict)
    message_attributes: Dict[str, SqsMessageAttribute] = Field(
        default_factory=dict, alias="messageAttributes"
    )
    event_source: Optional[str] = Field(default=None, alias="eventSource")
    event_source_arn: Optional[str] = Field(default=None, alias="eventSourceARN")
    aws_region: Optional[str] = Field(default=None, alias="awsRegion")

    # Set when the raw record failed validation; the encoder rejects such messages
    invalid_reason: Optional[str] = Field(default=None, exclude=True)

    @property
    def identifier(self) -> str:
        return self.message_id or ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "QueueMessage":
        """Validate one raw SQS record, keeping malformed ones as per-item failures."""
        try:
            return cls.model_validate(record)
        except ValidationError as exc:
            message_id = record.get("messageId") if isinstance(record, Mapping) else None
            return cls(
                message_id=message_id if isinstance(message_id, str) else None,
                invalid_reason=f"{exc.error_count()} validation error(s): {exc.errors()[0]['msg']}",
            )


class SqsEvent(BaseModel):
    """Envelope of an SQS batch; records stay raw until validated one by one."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    records: List[Any] = Field(default_factory=list, alias="Records")

    def messages(self) -> List[QueueMessage]:
        return [QueueMessage.from_record(record) for record in self.records]

    def source(self) -> QueueSource:
        """Queue identity taken from the first record (all records share one queue)."""
        if not self.records or not isinstance(self.records[0], Mapping):
            return QueueSource()
        first = self.records[0]
        return QueueSource(
            queue_arn=str(first.get("eventSourceARN") or ""),
            aws_region=str(first.get("awsRegion") or ""),
        )


# =============================================================================
# Responses
# =============================================================================


class BatchItemFailure(BaseModel):
    """One item the event source should redeliver."""

    model_config = ConfigDict(populate_by_name=True)

    item_identifier: str = Field(alias="itemIdentifier")


class BatchResponse(BaseModel):
    """Partial batch response understood by the SQS event source mapping."""

    model_config = ConfigDict(populate_by_name=True)

    batch_item_failures: List[BatchItemFailure] = Field(default_factory=list, alias="batchItemFailures")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
