"""Rendering of decoded value trees as protobuf-style JSON."""

from __future__ import annotations

import base64
import logging
import math
import struct
from typing import Any, Callable, Dict, Optional

from proto_dynamic.errors import DepthExceededError, UnsupportedFieldError
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

logger = logging.getLogger(__name__)


def to_camel(name: str) -> str:
    """lowerCamelCase the way protoc derives a field's json_name."""
    parts = name.split("_")
    return parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])


def _render_int(value: DecodedValue, fd: FieldDescriptor) -> Any:
    return _scalar(value, fd)


def _render_int64(value: DecodedValue, fd: FieldDescriptor) -> Any:
    return str(_scalar(value, fd))


def _render_bool(value: DecodedValue, fd: FieldDescriptor) -> Any:
    return bool(_scalar(value, fd))


def _render_string(value: DecodedValue, fd: FieldDescriptor) -> Any:
    return _scalar(value, fd)


def _render_double(value: DecodedValue, fd: FieldDescriptor) -> Any:
    number = _scalar(value, fd)
    return _non_finite(number) or number


def _render_float(value: DecodedValue, fd: FieldDescriptor) -> Any:
    number = _scalar(value, fd)
    return _non_finite(number) or shortest_float32(number)


def _render_bytes(value: DecodedValue, fd: FieldDescriptor) -> Any:
    if not isinstance(value, BytesValue):
        raise UnsupportedFieldError(f"Field '{fd.name}' expected bytes, got {type(value).__name__}")
    return base64.b64encode(value.raw).decode("ascii")


def _render_enum(value: DecodedValue, fd: FieldDescriptor) -> Any:
    number = _scalar(value, fd)
    name = fd.enum_type.name_of(number) if fd.enum_type is not None else None
    return name if name is not None else number


# Renderers for every non-composite kind; MESSAGE and GROUP recurse through
# the projector and are dispatched separately.
SCALAR_RENDERERS: Dict[FieldKind, Callable[[DecodedValue, FieldDescriptor], Any]] = {
    FieldKind.INT32: _render_int,
    FieldKind.UINT32: _render_int,
    FieldKind.SINT32: _render_int,
    FieldKind.FIXED32: _render_int,
    FieldKind.SFIXED32: _render_int,
    FieldKind.INT64: _render_int64,
    FieldKind.UINT64: _render_int64,
    FieldKind.SINT64: _render_int64,
    FieldKind.FIXED64: _render_int64,
    FieldKind.SFIXED64: _render_int64,
    FieldKind.FLOAT: _render_float,
    FieldKind.DOUBLE: _render_double,
    FieldKind.BOOL: _render_bool,
    FieldKind.STRING: _render_string,
    FieldKind.BYTES: _render_bytes,
    FieldKind.ENUM: _render_enum,
}


class JsonProjector:
    """Turns a MessageValue into a JSON-compatible dict.

    Fields are emitted in declaration order and only when they were present
    on the wire. Unknown fields are dropped unless `unknown_fields_key` names
    a key to render them under.
    """

    def __init__(
        self,
        use_json_names: bool = False,
        unknown_fields_key: Optional[str] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.use_json_names = use_json_names
        self.unknown_fields_key = unknown_fields_key
        self._log = log or logger

    def project(self, value: MessageValue, descriptor: MessageDescriptor) -> Dict[str, Any]:
        if value.type_name != descriptor.full_name:
            raise UnsupportedFieldError(
                f"Decoded value of type '{value.type_name}' cannot be projected "
                f"as '{descriptor.full_name}'"
            )
        try:
            return self._project_message(value, descriptor)
        except RecursionError:
            raise DepthExceededError(
                "Message nesting exceeds the interpreter recursion limit",
                type_name=descriptor.full_name,
            ) from None

    # -- messages --

    def _project_message(self, value: MessageValue, descriptor: MessageDescriptor) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for fd in descriptor.fields:
            if fd.number not in value.fields:
                continue
            out[self._key(fd)] = self._project_field(value.fields[fd.number], fd)

        if value.unknown_fields:
            if self.unknown_fields_key:
                out[self.unknown_fields_key] = [_unknown_record(u) for u in value.unknown_fields]
            else:
                self._log.debug(
                    "Dropped %d unknown field(s) of %s",
                    len(value.unknown_fields),
                    descriptor.full_name,
                )
        return out

    def _project_field(self, value: DecodedValue, fd: FieldDescriptor) -> Any:
        if fd.is_map:
            if not isinstance(value, MapValue):
                raise UnsupportedFieldError(f"Map field '{fd.name}' holds {type(value).__name__}")
            return self._project_map(value, fd)
        if fd.is_repeated:
            if not isinstance(value, RepeatedValue):
                raise UnsupportedFieldError(f"Repeated field '{fd.name}' holds {type(value).__name__}")
            return [self._project_single(item, fd) for item in value.items]
        return self._project_single(value, fd)

    def _project_single(self, value: DecodedValue, fd: FieldDescriptor) -> Any:
        if fd.kind.is_composite:
            if not isinstance(value, MessageValue):
                raise UnsupportedFieldError(f"Message field '{fd.name}' holds {type(value).__name__}")
            return self._project_message(value, fd.message_type)
        renderer = SCALAR_RENDERERS.get(fd.kind)
        if renderer is None:
            raise UnsupportedFieldError(f"No JSON rendering for field '{fd.name}' of kind {fd.kind}")
        return renderer(value, fd)

    def _project_map(self, value: MapValue, fd: FieldDescriptor) -> Dict[str, Any]:
        entry_type = fd.message_type
        key_fd = entry_type.field_by_number(1)
        value_fd = entry_type.field_by_number(2)
        out: Dict[str, Any] = {}
        for key, item in value.entries:
            # later occurrences overwrite earlier ones
            out[_map_key(key, key_fd)] = self._project_single(item, value_fd)
        return out

    def _key(self, fd: FieldDescriptor) -> str:
        if self.use_json_names:
            return fd.json_name or to_camel(fd.name)
        return fd.name


def _map_key(key: DecodedValue, fd: FieldDescriptor) -> str:
    raw = _scalar(key, fd)
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def _scalar(value: DecodedValue, fd: FieldDescriptor) -> Any:
    if not isinstance(value, ScalarValue):
        raise UnsupportedFieldError(
            f"Field '{fd.name}' of kind {fd.kind.name} holds {type(value).__name__}"
        )
    return value.value


def _non_finite(number: float) -> Optional[str]:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return None


def shortest_float32(number: float) -> float:
    """The shortest decimal that reads back as the same 32-bit float."""
    target = struct.pack("<f", number)
    for precision in range(1, 10):
        candidate = float(f"{number:.{precision}g}")
        if struct.pack("<f", candidate) == target:
            return candidate
    return number


def _unknown_record(field: UnknownField) -> Dict[str, Any]:
    return {
        "number": field.number,
        "wireType": int(field.wire_type),
        "data": base64.b64encode(field.data).decode("ascii"),
    }


def project_message(value: MessageValue, descriptor: MessageDescriptor, use_json_names: bool = False) -> Dict[str, Any]:
    return JsonProjector(use_json_names=use_json_names).project(value, descriptor)
