from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from proto_dynamic.wire.reader import WireType


class FieldKind(Enum):
    """Protobuf field types, numbered as in FieldDescriptorProto.Type."""

    DOUBLE = 1
    FLOAT = 2
    INT64 = 3
    UINT64 = 4
    INT32 = 5
    FIXED64 = 6
    FIXED32 = 7
    BOOL = 8
    STRING = 9
    GROUP = 10
    MESSAGE = 11
    BYTES = 12
    UINT32 = 13
    ENUM = 14
    SFIXED32 = 15
    SFIXED64 = 16
    SINT32 = 17
    SINT64 = 18

    @property
    def wire_type(self) -> WireType:
        return _KIND_WIRE_TYPES[self]

    @property
    def is_packable(self) -> bool:
        """Scalar kinds that may be encoded as one packed length-delimited run."""
        return self.wire_type in (WireType.VARINT, WireType.FIXED32, WireType.FIXED64)

    @property
    def is_composite(self) -> bool:
        return self in (FieldKind.MESSAGE, FieldKind.GROUP)


_KIND_WIRE_TYPES = {
    FieldKind.DOUBLE: WireType.FIXED64,
    FieldKind.FLOAT: WireType.FIXED32,
    FieldKind.INT64: WireType.VARINT,
    FieldKind.UINT64: WireType.VARINT,
    FieldKind.INT32: WireType.VARINT,
    FieldKind.FIXED64: WireType.FIXED64,
    FieldKind.FIXED32: WireType.FIXED32,
    FieldKind.BOOL: WireType.VARINT,
    FieldKind.STRING: WireType.LEN,
    FieldKind.GROUP: WireType.START_GROUP,
    FieldKind.MESSAGE: WireType.LEN,
    FieldKind.BYTES: WireType.LEN,
    FieldKind.UINT32: WireType.VARINT,
    FieldKind.ENUM: WireType.VARINT,
    FieldKind.SFIXED32: WireType.FIXED32,
    FieldKind.SFIXED64: WireType.FIXED64,
    FieldKind.SINT32: WireType.VARINT,
    FieldKind.SINT64: WireType.VARINT,
}


class Cardinality(Enum):
    """Numbered as in FieldDescriptorProto.Label."""

    OPTIONAL = 1
    REQUIRED = 2
    REPEATED = 3


# -- schema model --


@dataclass(eq=False)
class EnumDescriptor:
    full_name: str
    name: str
    values: Dict[int, str] = field(default_factory=dict)
    numbers: Dict[str, int] = field(default_factory=dict)

    def add_value(self, name: str, number: int) -> None:
        """Register a value; the first name declared for a number wins."""
        self.values.setdefault(number, name)
        self.numbers[name] = number

    def name_of(self, number: int) -> Optional[str]:
        return self.values.get(number)


@dataclass(eq=False)
class FieldDescriptor:
    name: str
    number: int
    kind: Optional[FieldKind]
    cardinality: Cardinality = Cardinality.OPTIONAL
    type_name: str = ""
    json_name: str = ""
    oneof_index: Optional[int] = None
    proto3_optional: bool = False
    packed_option: Optional[bool] = None

    # Bound by the registry once every type name is known.
    message_type: Optional[MessageDescriptor] = None
    enum_type: Optional[EnumDescriptor] = None
    is_map: bool = False
    is_packed: bool = False

    @property
    def is_repeated(self) -> bool:
        return self.cardinality == Cardinality.REPEATED


@dataclass(eq=False)
class MessageDescriptor:
    full_name: str
    name: str
    fields: List[FieldDescriptor] = field(default_factory=list)
    nested_messages: List[MessageDescriptor] = field(default_factory=list)
    nested_enums: List[EnumDescriptor] = field(default_factory=list)
    oneofs: List[str] = field(default_factory=list)
    map_entry_option: Optional[bool] = None
    _by_number: Dict[int, FieldDescriptor] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for fd in self.fields:
            self._by_number.setdefault(fd.number, fd)

    def add_field(self, fd: FieldDescriptor) -> None:
        self.fields.append(fd)
        self._by_number.setdefault(fd.number, fd)

    def field_by_number(self, number: int) -> Optional[FieldDescriptor]:
        return self._by_number.get(number)

    def field_by_name(self, name: str) -> Optional[FieldDescriptor]:
        for fd in self.fields:
            if fd.name == name:
                return fd
        return None

    @property
    def is_map_entry(self) -> bool:
        """True for the synthetic `key`/`value` entry type behind a map field.

        An explicit `map_entry` option decides; without one the message must
        consist of exactly `key` = 1 and `value` = 2.
        """
        if self.map_entry_option is False:
            return False
        if len(self.fields) != 2:
            return False
        key = self.field_by_number(1)
        value = self.field_by_number(2)
        return (
            key is not None
            and value is not None
            and key.name == "key"
            and value.name == "value"
        )


@dataclass(eq=False)
class FileDescriptor:
    name: str
    package: str = ""
    syntax: str = ""
    dependencies: List[str] = field(default_factory=list)
    messages: List[MessageDescriptor] = field(default_factory=list)
    enums: List[EnumDescriptor] = field(default_factory=list)


@dataclass(eq=False)
class FileDescriptorSet:
    files: List[FileDescriptor] = field(default_factory=list)


# -- decoded value tree --


@dataclass
class ScalarValue:
    kind: FieldKind
    value: Any


@dataclass
class BytesValue:
    raw: bytes


@dataclass
class UnknownField:
    """A field number the schema does not know, kept as raw wire bytes."""

    number: int
    wire_type: WireType
    data: bytes
    offset: int


@dataclass
class MessageValue:
    type_name: str
    fields: Dict[int, DecodedValue] = field(default_factory=dict)
    unknown_fields: List[UnknownField] = field(default_factory=list)


@dataclass
class RepeatedValue:
    items: List[DecodedValue] = field(default_factory=list)


@dataclass
class MapValue:
    entries: List[Tuple[DecodedValue, DecodedValue]] = field(default_factory=list)


DecodedValue = Union[ScalarValue, BytesValue, MessageValue, RepeatedValue, MapValue]
