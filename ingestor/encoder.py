"""Record Encoder: projects inbound events onto a table schema."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Union

from google.protobuf.message import EncodeError

from .core.error_taxonomy import EncodingError
from .core.models import GenericPayload, InvocationMetadata, QueueMessage, QueueSource
from .schemas import TableSchema

logger = logging.getLogger(__name__)

InboundEvent = Union[GenericPayload, QueueMessage]

# Nanoseconds since the Unix epoch
Clock = Callable[[], int]

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class CanonicalRecord:
    """One encoded event, ready for submission."""

    identifier: str
    payload: bytes
    ingested_at: int
    ingested_date: int


def ingestion_timestamps(now_ns: int) -> tuple[int, int]:
    """Return (ingested_at in microseconds, ingested_date in days) for one clock reading."""
    ingested_at = now_ns // 1_000
    ingested_date = (now_ns // 1_000_000_000) // SECONDS_PER_DAY
    return ingested_at, ingested_date


def event_identifier(event: InboundEvent, metadata: InvocationMetadata) -> str:
    """Natural identifier of an event: the message id, or the request id for generic payloads."""
    if isinstance(event, QueueMessage):
        return event.identifier
    return metadata.request_id


def _decode_base64(value: str, attribute: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Attribute %s carries an invalid base64 value; storing empty bytes", attribute)
        return b""


def _fill_generic(message: Any, event: GenericPayload, metadata: InvocationMetadata) -> None:
    try:
        payload_json = json.dumps(event.payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodingError(
            f"Failed to serialize event payload to JSON: {exc}", metadata.request_id
        ) from exc

    message.request_id = metadata.request_id
    message.payload = payload_json
    message.context = metadata.context_json
    if metadata.deadline_ms is not None:
        message.deadline = metadata.deadline_ms


def _fill_queue_message(message: Any, event: QueueMessage, metadata: InvocationMetadata) -> None:
    if event.invalid_reason:
        raise EncodingError(f"Malformed queue message: {event.invalid_reason}", event.identifier)
    if not event.message_id:
        raise EncodingError("Message ID is required")
    if not event.receipt_handle:
        raise EncodingError("Receipt handle is required", event.message_id)

    message.message_id = event.message_id
    message.receipt_handle = event.receipt_handle
    message.body = event.body or ""
    message.md5_of_body = event.md5_of_body or ""
    message.md5_of_message_attributes = event.md5_of_message_attributes or ""

    for key, value in event.attributes.items():
        message.attributes[key] = value

    for key, attr in event.message_attributes.items():
        target = message.message_attributes[key]
        if attr.string_value is not None:
            target.string_value = attr.string_value
        if attr.binary_value is not None:
            target.binary_value = _decode_base64(attr.binary_value, key)
        target.string_list_values.extend(attr.string_list_values)
        target.binary_list_values.extend(_decode_base64(value, key) for value in attr.binary_list_values)
        if attr.data_type is not None:
            target.data_type = attr.data_type

    source = metadata.source or QueueSource()
    message.queue_arn = source.queue_arn
    message.aws_region = source.aws_region


_FILLERS: Dict[type, Callable[[Any, Any, InvocationMetadata], None]] = {
    GenericPayload: _fill_generic,
    QueueMessage: _fill_queue_message,
}


class RecordEncoder:
    """
    Encode inbound events into CanonicalRecords for one table schema.

    The clock is read exactly once per event so ``ingested_at`` and
    ``ingested_date`` always describe the same instant. Serialization is
    deterministic: identical input and clock reading give identical bytes.
    """

    def __init__(self, schema: TableSchema, clock: Clock = time.time_ns) -> None:
        self._schema = schema
        self._clock = clock

    @property
    def schema(self) -> TableSchema:
        return self._schema

    def encode(self, event: InboundEvent, metadata: InvocationMetadata) -> CanonicalRecord:
        """
        Encode one event.

        Raises:
            EncodingError: The event lacks mandatory fields or a value does
                not fit the schema. The caller treats it as a per-item failure.
            TypeError: The event type has no encoder.
        """
        fill = _FILLERS.get(type(event))
        if fill is None:
            raise TypeError(f"No encoder registered for {type(event).__name__}")

        identifier = event_identifier(event, metadata)
        ingested_at, ingested_date = ingestion_timestamps(self._clock())

        message = self._schema.new_message()
        try:
            fill(message, event, metadata)
            message.ingested_at = ingested_at
            message.ingested_date = ingested_date
            payload = message.SerializeToString(deterministic=True)
        except (TypeError, ValueError, EncodeError) as exc:
            raise EncodingError(
                f"Value rejected by schema {self._schema.message_name}: {exc}", identifier
            ) from exc

        return CanonicalRecord(
            identifier=identifier,
            payload=payload,
            ingested_at=ingested_at,
            ingested_date=ingested_date,
        )
