"""Low-level cursor over protobuf wire-format bytes.

The encoding is described at https://protobuf.dev/programming-guides/encoding/.
Every offset reported by the reader (and by the errors it raises) is absolute
within the original buffer, so sub-readers created for nested messages still
point at the right byte when something goes wrong.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import Optional, Tuple

from proto_dynamic.errors import (
    DepthExceededError,
    GroupMismatchError,
    InvalidWireTypeError,
    TruncatedDataError,
    TruncatedVarintError,
    WireFormatError,
)

MAX_VARINT_BYTES = 10
MAX_FIELD_NUMBER = (1 << 29) - 1

_UINT32_MASK = 0xFFFFFFFF
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


class WireType(IntEnum):
    VARINT = 0
    FIXED64 = 1
    LEN = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


def decode_zigzag(value: int) -> int:
    """Map an unsigned zigzag value back to its signed form."""
    return (value >> 1) ^ -(value & 1)


def to_signed(value: int, bits: int) -> int:
    """Interpret the low `bits` bits of value as two's complement."""
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        return value - (1 << bits)
    return value


def to_int32(value: int) -> int:
    return to_signed(value, 32)


def to_int64(value: int) -> int:
    return to_signed(value, 64)


def to_uint32(value: int) -> int:
    return value & _UINT32_MASK


class WireReader:
    """Cursor over data[start:end] that reads one wire primitive at a time."""

    def __init__(self, data: bytes, start: int = 0, end: Optional[int] = None):
        self._data = data
        self._pos = start
        self._end = len(data) if end is None else end

    @property
    def position(self) -> int:
        return self._pos

    @property
    def end(self) -> int:
        return self._end

    def at_end(self) -> bool:
        return self._pos >= self._end

    # -- primitives --

    def read_varint(self, field_number: Optional[int] = None) -> int:
        """Read a base-128 varint of at most 10 bytes (64 bits)."""
        start = self._pos
        result = 0
        shift = 0
        for _ in range(MAX_VARINT_BYTES):
            if self._pos >= self._end:
                raise TruncatedVarintError(
                    "Truncated varint", offset=start, field_number=field_number
                )
            byte = self._data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                if result > _UINT64_MASK:
                    raise TruncatedVarintError(
                        "Varint exceeds 64 bits", offset=start, field_number=field_number
                    )
                return result
            shift += 7
        raise TruncatedVarintError(
            f"Varint longer than {MAX_VARINT_BYTES} bytes",
            offset=start,
            field_number=field_number,
        )

    def read_tag(self) -> Tuple[int, WireType]:
        """Read a field key and split it into (field_number, wire_type)."""
        offset = self._pos
        key = self.read_varint()
        field_number = key >> 3
        raw_wire_type = key & 0x7
        try:
            wire_type = WireType(raw_wire_type)
        except ValueError:
            raise InvalidWireTypeError(
                f"Invalid wire type {raw_wire_type}",
                offset=offset,
                field_number=field_number,
            ) from None
        if field_number == 0 or field_number > MAX_FIELD_NUMBER:
            raise WireFormatError(
                f"Invalid field number {field_number}", offset=offset
            )
        return field_number, wire_type

    def read_fixed32(self, field_number: Optional[int] = None) -> bytes:
        return self._take(4, field_number)

    def read_fixed64(self, field_number: Optional[int] = None) -> bytes:
        return self._take(8, field_number)

    def read_length_delimited(self, field_number: Optional[int] = None) -> WireReader:
        """Read a length prefix and return a sub-reader over exactly that many bytes."""
        offset = self._pos
        length = self.read_varint(field_number)
        if length > self._end - self._pos:
            raise TruncatedDataError(
                f"Length prefix {length} exceeds the {self._end - self._pos} remaining bytes",
                offset=offset,
                field_number=field_number,
            )
        sub = WireReader(self._data, self._pos, self._pos + length)
        self._pos += length
        return sub

    def read_bytes(self, field_number: Optional[int] = None) -> bytes:
        return self.read_length_delimited(field_number).remaining()

    def remaining(self) -> bytes:
        """Consume and return everything up to the end of this reader."""
        chunk = bytes(self._data[self._pos:self._end])
        self._pos = self._end
        return chunk

    # -- skipping --

    def skip_field(self, field_number: int, wire_type: WireType, max_depth: Optional[int] = None) -> bytes:
        """Skip the value of a field whose tag was just read.

        Returns the raw encoded value bytes (for groups, everything up to and
        including the matching end-group tag). `max_depth` bounds how many
        groups may be open at once while skipping.
        """
        start = self._pos
        if wire_type == WireType.VARINT:
            self.read_varint(field_number)
        elif wire_type == WireType.FIXED64:
            self.read_fixed64(field_number)
        elif wire_type == WireType.FIXED32:
            self.read_fixed32(field_number)
        elif wire_type == WireType.LEN:
            self.read_length_delimited(field_number)
        elif wire_type == WireType.START_GROUP:
            self._skip_group(field_number, start, max_depth)
        else:
            raise GroupMismatchError(
                "Unexpected end-group tag", offset=start, field_number=field_number
            )
        return bytes(self._data[start:self._pos])

    def _skip_group(self, group_number: int, start: int, max_depth: Optional[int]) -> None:
        open_groups = [group_number]
        while open_groups:
            if max_depth is not None and len(open_groups) > max_depth:
                raise DepthExceededError(
                    f"Group nesting exceeds maximum {max_depth} while skipping",
                    offset=self._pos,
                    field_number=group_number,
                )
            if self.at_end():
                raise GroupMismatchError(
                    "Start-group without matching end-group",
                    offset=start,
                    field_number=group_number,
                )
            offset = self._pos
            number, wire_type = self.read_tag()
            if wire_type == WireType.START_GROUP:
                open_groups.append(number)
            elif wire_type == WireType.END_GROUP:
                if number != open_groups[-1]:
                    raise GroupMismatchError(
                        f"End-group tag for field {number} closes group {open_groups[-1]}",
                        offset=offset,
                        field_number=open_groups[-1],
                    )
                open_groups.pop()
            else:
                self.skip_field(number, wire_type)

    # -- helpers --

    def _take(self, size: int, field_number: Optional[int]) -> bytes:
        if self._end - self._pos < size:
            raise TruncatedDataError(
                f"Need {size} bytes, {self._end - self._pos} remaining",
                offset=self._pos,
                field_number=field_number,
            )
        chunk = bytes(self._data[self._pos:self._pos + size])
        self._pos += size
        return chunk


def unpack_fixed(fmt: str, raw: bytes):
    """Unpack a little-endian fixed-width value ('I', 'i', 'f', 'Q', 'q', 'd')."""
    return struct.unpack("<" + fmt, raw)[0]
