"""Schema-guided decoding of protobuf wire bytes into a generic value tree."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from proto_dynamic.errors import (
    DepthExceededError,
    GroupMismatchError,
    InvalidWireTypeError,
    WireFormatError,
)
from proto_dynamic.models import (
    BytesValue,
    DecodedValue,
    FieldDescriptor,
    FieldKind,
    MapValue,
    MessageDescriptor,
    MessageValue,
    RepeatedValue,
    ScalarValue,
    UnknownField,
)
from proto_dynamic.registry.registry import Registry
from proto_dynamic.wire.reader import (
    WireReader,
    WireType,
    decode_zigzag,
    to_int32,
    to_int64,
    to_uint32,
    unpack_fixed,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 100

MAP_KEY_NUMBER = 1
MAP_VALUE_NUMBER = 2

ScalarReader = Callable[[WireReader, int], DecodedValue]


def _varint(convert: Callable[[int], object], kind: FieldKind) -> ScalarReader:
    def read(reader: WireReader, number: int) -> DecodedValue:
        return ScalarValue(kind, convert(reader.read_varint(number)))
    return read


def _fixed32(fmt: str, kind: FieldKind) -> ScalarReader:
    def read(reader: WireReader, number: int) -> DecodedValue:
        return ScalarValue(kind, unpack_fixed(fmt, reader.read_fixed32(number)))
    return read


def _fixed64(fmt: str, kind: FieldKind) -> ScalarReader:
    def read(reader: WireReader, number: int) -> DecodedValue:
        return ScalarValue(kind, unpack_fixed(fmt, reader.read_fixed64(number)))
    return read


def _read_string(reader: WireReader, number: int) -> DecodedValue:
    offset = reader.position
    raw = reader.read_bytes(number)
    try:
        return ScalarValue(FieldKind.STRING, raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise WireFormatError(
            f"String field is not valid UTF-8: {e.reason}",
            offset=offset,
            field_number=number,
        ) from e


def _read_bytes(reader: WireReader, number: int) -> DecodedValue:
    return BytesValue(reader.read_bytes(number))


# Readers for every non-composite kind. MESSAGE and GROUP recurse through the
# decoder itself and are dispatched separately.
SCALAR_READERS: Dict[FieldKind, ScalarReader] = {
    FieldKind.INT32: _varint(to_int32, FieldKind.INT32),
    FieldKind.INT64: _varint(to_int64, FieldKind.INT64),
    FieldKind.UINT32: _varint(to_uint32, FieldKind.UINT32),
    FieldKind.UINT64: _varint(int, FieldKind.UINT64),
    FieldKind.SINT32: _varint(lambda v: decode_zigzag(to_uint32(v)), FieldKind.SINT32),
    FieldKind.SINT64: _varint(decode_zigzag, FieldKind.SINT64),
    FieldKind.BOOL: _varint(bool, FieldKind.BOOL),
    FieldKind.ENUM: _varint(to_int32, FieldKind.ENUM),
    FieldKind.FIXED32: _fixed32("I", FieldKind.FIXED32),
    FieldKind.SFIXED32: _fixed32("i", FieldKind.SFIXED32),
    FieldKind.FLOAT: _fixed32("f", FieldKind.FLOAT),
    FieldKind.FIXED64: _fixed64("Q", FieldKind.FIXED64),
    FieldKind.SFIXED64: _fixed64("q", FieldKind.SFIXED64),
    FieldKind.DOUBLE: _fixed64("d", FieldKind.DOUBLE),
    FieldKind.STRING: _read_string,
    FieldKind.BYTES: _read_bytes,
}


def default_value(fd: FieldDescriptor) -> DecodedValue:
    """The zero value of a field's type, used for absent map keys/values."""
    kind = fd.kind
    if kind.is_composite:
        type_name = fd.message_type.full_name if fd.message_type else fd.type_name.lstrip(".")
        return MessageValue(type_name=type_name)
    if kind == FieldKind.BYTES:
        return BytesValue(b"")
    if kind == FieldKind.STRING:
        return ScalarValue(kind, "")
    if kind == FieldKind.BOOL:
        return ScalarValue(kind, False)
    if kind in (FieldKind.FLOAT, FieldKind.DOUBLE):
        return ScalarValue(kind, 0.0)
    return ScalarValue(kind, 0)


class WireDecoder:
    """Decodes payload bytes against a resolved MessageDescriptor.

    Holds configuration only, so one instance can serve many payloads and
    threads.
    """

    def __init__(self, max_depth: Optional[int] = DEFAULT_MAX_DEPTH, log: Optional[logging.Logger] = None):
        self.max_depth = max_depth
        self._log = log or logger

    def decode(self, root: MessageDescriptor, data: bytes) -> MessageValue:
        """Decode `data` as one instance of `root`."""
        try:
            result = self._decode_message(root, WireReader(data), depth=0)
        except RecursionError:
            raise DepthExceededError(
                "Message nesting exceeds the interpreter recursion limit",
                type_name=root.full_name,
            ) from None
        self._log.info(
            "Decoded %s (%d bytes, %d fields, %d unknown)",
            root.full_name,
            len(data),
            len(result.fields),
            len(result.unknown_fields),
        )
        return result

    # -- messages --

    def _decode_message(
        self,
        descriptor: MessageDescriptor,
        reader: WireReader,
        depth: int,
        group_number: Optional[int] = None,
        group_offset: Optional[int] = None,
    ) -> MessageValue:
        if self.max_depth is not None and depth > self.max_depth:
            raise DepthExceededError(
                f"Nesting depth {depth} exceeds maximum {self.max_depth}",
                offset=reader.position,
                field_number=group_number,
                type_name=descriptor.full_name,
            )

        message = MessageValue(type_name=descriptor.full_name)
        while not reader.at_end():
            offset = reader.position
            number, wire_type = reader.read_tag()

            if wire_type == WireType.END_GROUP:
                if group_number is None or number != group_number:
                    raise GroupMismatchError(
                        "Unexpected end-group tag",
                        offset=offset,
                        field_number=number,
                        type_name=descriptor.full_name,
                    )
                return message

            fd = descriptor.field_by_number(number)
            if fd is None:
                remaining = None if self.max_depth is None else self.max_depth - depth
                try:
                    data = reader.skip_field(number, wire_type, max_depth=remaining)
                except WireFormatError as e:
                    raise e.with_context(None, descriptor.full_name)
                message.unknown_fields.append(UnknownField(number, wire_type, data, offset))
                self._log.debug(
                    "Kept unknown field %d (wire type %s) of %s at offset %d",
                    number,
                    wire_type.name,
                    descriptor.full_name,
                    offset,
                )
                continue

            try:
                self._decode_field(message, fd, wire_type, reader, depth, offset)
            except WireFormatError as e:
                raise e.with_context(fd.name, descriptor.full_name)

        if group_number is not None:
            raise GroupMismatchError(
                "Start-group without matching end-group",
                offset=group_offset,
                field_number=group_number,
                type_name=descriptor.full_name,
            )
        return message

    def _decode_field(
        self,
        message: MessageValue,
        fd: FieldDescriptor,
        wire_type: WireType,
        reader: WireReader,
        depth: int,
        offset: int,
    ) -> None:
        if fd.is_map:
            self._check_wire_type(fd, wire_type, WireType.LEN, offset)
            entries = message.fields.setdefault(fd.number, MapValue())
            entries.entries.append(self._decode_map_entry(fd, reader, depth, offset))
            return

        if fd.is_repeated:
            items = message.fields.setdefault(fd.number, RepeatedValue())
            if wire_type == WireType.LEN and fd.is_packed:
                packed = reader.read_length_delimited(fd.number)
                read = SCALAR_READERS[fd.kind]
                while not packed.at_end():
                    items.items.append(read(packed, fd.number))
                return
            items.items.append(self._decode_single(fd, wire_type, reader, depth, offset))
            return

        value = self._decode_single(fd, wire_type, reader, depth, offset)
        previous = message.fields.get(fd.number)
        if isinstance(previous, MessageValue) and isinstance(value, MessageValue):
            _merge_messages(previous, value)
        else:
            message.fields[fd.number] = value

    def _decode_single(
        self,
        fd: FieldDescriptor,
        wire_type: WireType,
        reader: WireReader,
        depth: int,
        offset: int,
    ) -> DecodedValue:
        self._check_wire_type(fd, wire_type, fd.kind.wire_type, offset)
        if fd.kind == FieldKind.MESSAGE:
            sub = reader.read_length_delimited(fd.number)
            return self._decode_message(fd.message_type, sub, depth + 1)
        if fd.kind == FieldKind.GROUP:
            return self._decode_message(
                fd.message_type, reader, depth + 1, group_number=fd.number, group_offset=offset
            )
        return SCALAR_READERS[fd.kind](reader, fd.number)

    def _decode_map_entry(self, fd: FieldDescriptor, reader: WireReader, depth: int, offset: int):
        entry_type = fd.message_type
        sub = reader.read_length_delimited(fd.number)
        entry = self._decode_message(entry_type, sub, depth + 1)
        key_fd = entry_type.field_by_number(MAP_KEY_NUMBER)
        value_fd = entry_type.field_by_number(MAP_VALUE_NUMBER)
        key = entry.fields.get(MAP_KEY_NUMBER) or default_value(key_fd)
        value = entry.fields.get(MAP_VALUE_NUMBER) or default_value(value_fd)
        return key, value

    @staticmethod
    def _check_wire_type(fd: FieldDescriptor, actual: WireType, expected: WireType, offset: int) -> None:
        if actual != expected:
            raise InvalidWireTypeError(
                f"Wire type {actual.name} does not match {fd.kind.name} field "
                f"(expected {expected.name})",
                offset=offset,
                field_number=fd.number,
                field_name=fd.name,
            )


def _merge_messages(target: MessageValue, source: MessageValue) -> None:
    """Merge a later occurrence of a singular message field into the earlier one."""
    for number, value in source.fields.items():
        existing = target.fields.get(number)
        if isinstance(existing, RepeatedValue) and isinstance(value, RepeatedValue):
            existing.items.extend(value.items)
        elif isinstance(existing, MapValue) and isinstance(value, MapValue):
            existing.entries.extend(value.entries)
        elif isinstance(existing, MessageValue) and isinstance(value, MessageValue):
            _merge_messages(existing, value)
        else:
            target.fields[number] = value
    target.unknown_fields.extend(source.unknown_fields)


def decode_message(
    registry: Registry,
    type_name: str,
    data: bytes,
    max_depth: Optional[int] = DEFAULT_MAX_DEPTH,
) -> MessageValue:
    """Resolve `type_name` in the registry and decode `data` against it."""
    return WireDecoder(max_depth=max_depth).decode(registry.resolve(type_name), data)
