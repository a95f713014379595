"""Recursive descent parser for serialized FileDescriptorSet messages.

The descriptor set is itself a protobuf message, so it is read with the same
wire primitives as any payload, against the fixed schema of
google/protobuf/descriptor.proto. Only the parts needed to decode payloads
are kept; services, source info and most options are skipped.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple, Union

from proto_dynamic.errors import SchemaParseError, WireFormatError
from proto_dynamic.models import (
    Cardinality,
    EnumDescriptor,
    FieldDescriptor,
    FieldKind,
    FileDescriptor,
    FileDescriptorSet,
    MessageDescriptor,
)
from proto_dynamic.wire.reader import WireReader, WireType, to_int32

# FileDescriptorSet
_SET_FILE = 1

# FileDescriptorProto
_FILE_NAME = 1
_FILE_PACKAGE = 2
_FILE_DEPENDENCY = 3
_FILE_MESSAGE_TYPE = 4
_FILE_ENUM_TYPE = 5
_FILE_SYNTAX = 12

# DescriptorProto
_MSG_NAME = 1
_MSG_FIELD = 2
_MSG_NESTED_TYPE = 3
_MSG_ENUM_TYPE = 4
_MSG_OPTIONS = 7
_MSG_ONEOF_DECL = 8

# MessageOptions
_MSG_OPT_MAP_ENTRY = 7

# FieldDescriptorProto
_FIELD_NAME = 1
_FIELD_NUMBER = 3
_FIELD_LABEL = 4
_FIELD_TYPE = 5
_FIELD_TYPE_NAME = 6
_FIELD_OPTIONS = 8
_FIELD_ONEOF_INDEX = 9
_FIELD_JSON_NAME = 10
_FIELD_PROTO3_OPTIONAL = 17

# FieldOptions
_FIELD_OPT_PACKED = 2

# OneofDescriptorProto / EnumDescriptorProto / EnumValueDescriptorProto
_ONEOF_NAME = 1
_ENUM_NAME = 1
_ENUM_VALUE = 2
_ENUM_VALUE_NAME = 1
_ENUM_VALUE_NUMBER = 2

# Deepest nested_type chain accepted, matching the decoder's default depth.
MAX_NESTING_DEPTH = 100

_Value = Union[int, WireReader]


def parse_descriptor_set(data: bytes) -> FileDescriptorSet:
    """Parse serialized FileDescriptorSet bytes into descriptor models."""
    try:
        return DescriptorSetParser(data).parse()
    except WireFormatError as e:
        raise SchemaParseError(f"Malformed descriptor set: {e}") from e


class DescriptorSetParser:
    """Walks the descriptor.proto structure of a FileDescriptorSet."""

    def __init__(self, data: bytes):
        self._data = data

    # -- public API --

    def parse(self) -> FileDescriptorSet:
        files: List[FileDescriptor] = []
        for number, value in _iter_fields(WireReader(self._data)):
            if number == _SET_FILE:
                files.append(self._parse_file(_as_reader(value, number)))
        return FileDescriptorSet(files=files)

    # -- files --

    def _parse_file(self, reader: WireReader) -> FileDescriptor:
        # The package scopes every type in the file, but it may appear after
        # the types on the wire, so names are qualified once it is known.
        name = ""
        package = ""
        syntax = ""
        dependencies: List[str] = []
        raw_messages: List[WireReader] = []
        raw_enums: List[WireReader] = []

        for number, value in _iter_fields(reader):
            if number == _FILE_NAME:
                name = _as_string(value, number)
            elif number == _FILE_PACKAGE:
                package = _as_string(value, number)
            elif number == _FILE_DEPENDENCY:
                dependencies.append(_as_string(value, number))
            elif number == _FILE_MESSAGE_TYPE:
                raw_messages.append(_as_reader(value, number))
            elif number == _FILE_ENUM_TYPE:
                raw_enums.append(_as_reader(value, number))
            elif number == _FILE_SYNTAX:
                syntax = _as_string(value, number)

        return FileDescriptor(
            name=name,
            package=package,
            syntax=syntax,
            dependencies=dependencies,
            messages=[self._parse_message(r, package, 0) for r in raw_messages],
            enums=[self._parse_enum(r, package) for r in raw_enums],
        )

    # -- messages --

    def _parse_message(self, reader: WireReader, scope: str, depth: int) -> MessageDescriptor:
        if depth > MAX_NESTING_DEPTH:
            raise SchemaParseError(
                f"Nested types in '{scope}' exceed the maximum depth of {MAX_NESTING_DEPTH}"
            )
        name = ""
        raw_fields: List[WireReader] = []
        raw_nested: List[WireReader] = []
        raw_enums: List[WireReader] = []
        oneofs: List[str] = []
        map_entry: Optional[bool] = None

        for number, value in _iter_fields(reader):
            if number == _MSG_NAME:
                name = _as_string(value, number)
            elif number == _MSG_FIELD:
                raw_fields.append(_as_reader(value, number))
            elif number == _MSG_NESTED_TYPE:
                raw_nested.append(_as_reader(value, number))
            elif number == _MSG_ENUM_TYPE:
                raw_enums.append(_as_reader(value, number))
            elif number == _MSG_OPTIONS:
                map_entry = _parse_bool_option(_as_reader(value, number), _MSG_OPT_MAP_ENTRY, map_entry)
            elif number == _MSG_ONEOF_DECL:
                oneofs.append(self._parse_oneof(_as_reader(value, number)))

        if not name:
            raise SchemaParseError(f"Message without a name in scope '{scope or '<root>'}'")
        full_name = _qualify(scope, name)
        msg = MessageDescriptor(
            full_name=full_name,
            name=name,
            oneofs=oneofs,
            map_entry_option=map_entry,
        )
        for r in raw_fields:
            msg.add_field(self._parse_field(r, full_name))
        msg.nested_messages = [self._parse_message(r, full_name, depth + 1) for r in raw_nested]
        msg.nested_enums = [self._parse_enum(r, full_name) for r in raw_enums]
        return msg

    def _parse_field(self, reader: WireReader, owner: str) -> FieldDescriptor:
        name = ""
        field_number = 0
        label = Cardinality.OPTIONAL.value
        kind_number: Optional[int] = None
        type_name = ""
        json_name = ""
        oneof_index: Optional[int] = None
        proto3_optional = False
        packed: Optional[bool] = None

        for number, value in _iter_fields(reader):
            if number == _FIELD_NAME:
                name = _as_string(value, number)
            elif number == _FIELD_NUMBER:
                field_number = to_int32(_as_int(value, number))
            elif number == _FIELD_LABEL:
                label = _as_int(value, number)
            elif number == _FIELD_TYPE:
                kind_number = _as_int(value, number)
            elif number == _FIELD_TYPE_NAME:
                type_name = _as_string(value, number)
            elif number == _FIELD_OPTIONS:
                packed = _parse_bool_option(_as_reader(value, number), _FIELD_OPT_PACKED, packed)
            elif number == _FIELD_ONEOF_INDEX:
                oneof_index = to_int32(_as_int(value, number))
            elif number == _FIELD_JSON_NAME:
                json_name = _as_string(value, number)
            elif number == _FIELD_PROTO3_OPTIONAL:
                proto3_optional = bool(_as_int(value, number))

        where = f"{owner}.{name or '?'}"
        if field_number <= 0:
            raise SchemaParseError(f"Field '{where}' has invalid number {field_number}")
        try:
            cardinality = Cardinality(label)
        except ValueError:
            raise SchemaParseError(f"Field '{where}' has invalid label {label}") from None

        kind: Optional[FieldKind] = None
        if kind_number is not None:
            try:
                kind = FieldKind(kind_number)
            except ValueError:
                raise SchemaParseError(f"Field '{where}' has invalid type {kind_number}") from None
        elif not type_name:
            raise SchemaParseError(f"Field '{where}' has neither a type nor a type name")

        if kind in (FieldKind.MESSAGE, FieldKind.GROUP, FieldKind.ENUM) and not type_name:
            raise SchemaParseError(f"Field '{where}' of kind {kind.name} has no type name")

        return FieldDescriptor(
            name=name,
            number=field_number,
            kind=kind,
            cardinality=cardinality,
            type_name=type_name,
            json_name=json_name,
            oneof_index=oneof_index,
            proto3_optional=proto3_optional,
            packed_option=packed,
        )

    def _parse_oneof(self, reader: WireReader) -> str:
        name = ""
        for number, value in _iter_fields(reader):
            if number == _ONEOF_NAME:
                name = _as_string(value, number)
        return name

    # -- enums --

    def _parse_enum(self, reader: WireReader, scope: str) -> EnumDescriptor:
        name = ""
        values: List[Tuple[str, int]] = []
        for number, value in _iter_fields(reader):
            if number == _ENUM_NAME:
                name = _as_string(value, number)
            elif number == _ENUM_VALUE:
                values.append(self._parse_enum_value(_as_reader(value, number)))

        if not name:
            raise SchemaParseError(f"Enum without a name in scope '{scope or '<root>'}'")
        enum = EnumDescriptor(full_name=_qualify(scope, name), name=name)
        for value_name, value_number in values:
            enum.add_value(value_name, value_number)
        return enum

    def _parse_enum_value(self, reader: WireReader) -> Tuple[str, int]:
        name = ""
        value_number = 0
        for number, value in _iter_fields(reader):
            if number == _ENUM_VALUE_NAME:
                name = _as_string(value, number)
            elif number == _ENUM_VALUE_NUMBER:
                value_number = to_int32(_as_int(value, number))
        return name, value_number


# -- wire helpers --


def _iter_fields(reader: WireReader) -> Iterator[Tuple[int, _Value]]:
    """Yield (field_number, value) pairs; varints as ints, LEN fields as sub-readers.

    Fixed-width and group fields never carry data needed here and are skipped.
    """
    while not reader.at_end():
        number, wire_type = reader.read_tag()
        if wire_type == WireType.VARINT:
            yield number, reader.read_varint(number)
        elif wire_type == WireType.LEN:
            yield number, reader.read_length_delimited(number)
        else:
            reader.skip_field(number, wire_type)


def _parse_bool_option(reader: WireReader, option_number: int, current: Optional[bool]) -> Optional[bool]:
    for number, value in _iter_fields(reader):
        if number == option_number:
            current = bool(_as_int(value, number))
    return current


def _as_reader(value: _Value, number: int) -> WireReader:
    if not isinstance(value, WireReader):
        raise SchemaParseError(f"Descriptor field {number} should be length-delimited")
    return value


def _as_int(value: _Value, number: int) -> int:
    if not isinstance(value, int):
        raise SchemaParseError(f"Descriptor field {number} should be a varint")
    return value


def _as_string(value: _Value, number: int) -> str:
    raw = _as_reader(value, number).remaining()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SchemaParseError(f"Descriptor field {number} is not valid UTF-8: {e}") from e


def _qualify(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name
