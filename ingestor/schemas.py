"""Compiled table schemas and schema descriptor resolution.

The destination tables are described by proto2 messages. Their compiled
``FileDescriptorSet`` is embedded here (built with ``descriptor_pb2``) and can
be replaced at deploy time by a serialized set on disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, NamedTuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from .core.error_taxonomy import ConfigError, SchemaResolutionError

_F = descriptor_pb2.FieldDescriptorProto


class SchemaRef(NamedTuple):
    file_name: str
    message_name: str


GENERIC_EVENTS = SchemaRef("aws_raw_events.proto", "table_aws_raw_events")
QUEUE_MESSAGES = SchemaRef("sqs_messages.proto", "table_sqs_messages")


def _add_field(
    msg: descriptor_pb2.DescriptorProto,
    *,
    name: str,
    number: int,
    field_type: int,
    label: int = _F.LABEL_OPTIONAL,
    type_name: str = "",
) -> None:
    field = msg.field.add()
    field.name = name
    field.number = number
    field.label = label
    field.type = field_type
    if type_name:
        field.type_name = type_name


def _add_map(
    msg: descriptor_pb2.DescriptorProto,
    *,
    name: str,
    number: int,
    entry_name: str,
    value_type: int,
    value_type_name: str = "",
) -> None:
    entry = msg.nested_type.add()
    entry.name = entry_name
    entry.options.map_entry = True
    _add_field(entry, name="key", number=1, field_type=_F.TYPE_STRING)
    _add_field(entry, name="value", number=2, field_type=value_type, type_name=value_type_name)
    _add_field(
        msg,
        name=name,
        number=number,
        field_type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=f".{msg.name}.{entry_name}",
    )


def _raw_events_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = GENERIC_EVENTS.file_name
    fdp.syntax = "proto2"

    msg = fdp.message_type.add()
    msg.name = GENERIC_EVENTS.message_name
    _add_field(msg, name="request_id", number=1, field_type=_F.TYPE_STRING)
    _add_field(msg, name="payload", number=2, field_type=_F.TYPE_STRING)
    _add_field(msg, name="context", number=3, field_type=_F.TYPE_STRING)
    _add_field(msg, name="deadline", number=4, field_type=_F.TYPE_INT64)
    _add_field(msg, name="ingested_at", number=5, field_type=_F.TYPE_INT64)
    _add_field(msg, name="ingested_date", number=6, field_type=_F.TYPE_INT32)
    return fdp


def _sqs_messages_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = QUEUE_MESSAGES.file_name
    fdp.syntax = "proto2"

    msg = fdp.message_type.add()
    msg.name = QUEUE_MESSAGES.message_name

    attrs = msg.nested_type.add()
    attrs.name = "MessageAttributes"
    _add_field(attrs, name="string_value", number=1, field_type=_F.TYPE_STRING)
    _add_field(attrs, name="binary_value", number=2, field_type=_F.TYPE_BYTES)
    _add_field(attrs, name="string_list_values", number=3, field_type=_F.TYPE_STRING, label=_F.LABEL_REPEATED)
    _add_field(attrs, name="binary_list_values", number=4, field_type=_F.TYPE_BYTES, label=_F.LABEL_REPEATED)
    _add_field(attrs, name="data_type", number=5, field_type=_F.TYPE_STRING)

    _add_field(msg, name="message_id", number=1, field_type=_F.TYPE_STRING)
    _add_field(msg, name="receipt_handle", number=2, field_type=_F.TYPE_STRING)
    _add_field(msg, name="body", number=3, field_type=_F.TYPE_STRING)
    _add_field(msg, name="md5_of_body", number=4, field_type=_F.TYPE_STRING)
    _add_field(msg, name="md5_of_message_attributes", number=5, field_type=_F.TYPE_STRING)
    _add_map(msg, name="attributes", number=6, entry_name="AttributesEntry", value_type=_F.TYPE_STRING)
    _add_map(
        msg,
        name="message_attributes",
        number=7,
        entry_name="MessageAttributesEntry",
        value_type=_F.TYPE_MESSAGE,
        value_type_name=f".{msg.name}.MessageAttributes",
    )
    _add_field(msg, name="queue_arn", number=8, field_type=_F.TYPE_STRING)
    _add_field(msg, name="aws_region", number=9, field_type=_F.TYPE_STRING)
    _add_field(msg, name="ingested_at", number=10, field_type=_F.TYPE_INT64)
    _add_field(msg, name="ingested_date", number=11, field_type=_F.TYPE_INT32)
    return fdp


@lru_cache(maxsize=1)
def embedded_descriptor_set() -> bytes:
    """Serialized FileDescriptorSet for every table this project writes to."""
    fds = descriptor_pb2.FileDescriptorSet()
    fds.file.add().CopyFrom(_raw_events_file())
    fds.file.add().CopyFrom(_sqs_messages_file())
    return fds.SerializeToString()


def read_descriptor_set(path: str | Path) -> bytes:
    """Read a serialized FileDescriptorSet (e.g. ``protoc --descriptor_set_out``)."""
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"Cannot read descriptor set at {path}: {exc}") from exc


def _parse_set(descriptor_set: bytes) -> descriptor_pb2.FileDescriptorSet:
    fds = descriptor_pb2.FileDescriptorSet()
    try:
        fds.ParseFromString(descriptor_set)
    except DecodeError as exc:
        raise ConfigError(f"Failed to decode descriptor set: {exc}") from exc
    return fds


def _find_file(descriptor_set: bytes, file_name: str) -> descriptor_pb2.FileDescriptorProto:
    for file_proto in _parse_set(descriptor_set).file:
        if file_proto.name == file_name:
            return file_proto
    raise SchemaResolutionError(file_name)


def load_descriptor_proto(
    descriptor_set: bytes,
    file_name: str,
    message_name: str,
) -> descriptor_pb2.DescriptorProto:
    """
    Return the message descriptor named ``message_name`` in ``file_name``.

    Raises:
        SchemaResolutionError: If either the file or the message is absent.
    """
    file_proto = _find_file(descriptor_set, file_name)
    for message_proto in file_proto.message_type:
        if message_proto.name == message_name:
            return message_proto
    raise SchemaResolutionError(file_name, message_name)


@dataclass(frozen=True)
class TableSchema:
    """A resolved table schema: descriptor plus the generated message class."""

    file_name: str
    message_name: str
    descriptor_proto: descriptor_pb2.DescriptorProto
    message_class: type

    @property
    def descriptor(self) -> Any:
        return self.message_class.DESCRIPTOR

    def new_message(self) -> Any:
        return self.message_class()


@lru_cache(maxsize=None)
def resolve_schema(
    file_name: str,
    message_name: str,
    descriptor_set: bytes | None = None,
) -> TableSchema:
    """
    Resolve a table schema from a compiled descriptor set.

    Defaults to the embedded set. Results are cached per process.

    Raises:
        SchemaResolutionError: The file or message is absent.
        ConfigError: The set lists a file before its imports or is otherwise
            unbuildable.
    """
    if descriptor_set is None:
        descriptor_set = embedded_descriptor_set()

    descriptor_proto = load_descriptor_proto(descriptor_set, file_name, message_name)
    file_proto = _find_file(descriptor_set, file_name)

    # Imports precede their dependents in a protoc --include_imports set
    pool = descriptor_pool.DescriptorPool()
    full_name = f"{file_proto.package}.{message_name}" if file_proto.package else message_name
    try:
        for candidate in _parse_set(descriptor_set).file:
            pool.AddSerializedFile(candidate.SerializeToString())
            if candidate.name == file_name:
                break
        message_class = message_factory.GetMessageClass(pool.FindMessageTypeByName(full_name))
    except (TypeError, KeyError) as exc:
        raise ConfigError(f"Cannot build schema '{full_name}' from descriptor set: {exc}") from exc

    return TableSchema(
        file_name=file_name,
        message_name=message_name,
        descriptor_proto=descriptor_proto,
        message_class=message_class,
    )
