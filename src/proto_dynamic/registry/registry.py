"""Index of message and enum types across every file of a descriptor set."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterator, List, Optional, Union

from proto_dynamic.errors import SchemaParseError, TypeNotFoundError
from proto_dynamic.models import (
    EnumDescriptor,
    FieldDescriptor,
    FieldKind,
    FileDescriptor,
    FileDescriptorSet,
    MessageDescriptor,
)

from .descriptor_parser import parse_descriptor_set

logger = logging.getLogger(__name__)

TypeDescriptor = Union[MessageDescriptor, EnumDescriptor]


class DuplicatePolicy(Enum):
    """What to do when two definitions share a fully-qualified name."""

    FIRST_WINS = "first-wins"
    ERROR = "error"


class Registry:
    """Read-only lookup of types by fully-qualified name.

    Building runs in two passes: every type name in every file is collected
    first, then each message/enum field is bound to its descriptor. Forward
    references across files and self-referencing types therefore resolve
    regardless of declaration order.
    """

    def __init__(
        self,
        descriptor_set: FileDescriptorSet,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.FIRST_WINS,
        log: Optional[logging.Logger] = None,
    ):
        self._log = log or logger
        self._set = descriptor_set
        self._duplicate_policy = duplicate_policy
        self._types: Dict[str, TypeDescriptor] = {}
        self._all_messages: List[MessageDescriptor] = []

        self._collect()
        self._bind()

    @classmethod
    def build(
        cls,
        data: bytes,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.FIRST_WINS,
        log: Optional[logging.Logger] = None,
    ) -> Registry:
        """Parse serialized FileDescriptorSet bytes and index their types."""
        descriptor_set = parse_descriptor_set(data)
        registry = cls(descriptor_set, duplicate_policy=duplicate_policy, log=log)
        registry._log.info(
            "Built registry (files: %d, messages: %d, enums: %d)",
            len(descriptor_set.files),
            len(registry.messages),
            len(registry.enums),
        )
        return registry

    # -- public API --

    @property
    def files(self) -> List[FileDescriptor]:
        return list(self._set.files)

    @property
    def messages(self) -> Dict[str, MessageDescriptor]:
        return {n: t for n, t in self._types.items() if isinstance(t, MessageDescriptor)}

    @property
    def enums(self) -> Dict[str, EnumDescriptor]:
        return {n: t for n, t in self._types.items() if isinstance(t, EnumDescriptor)}

    def find(self, full_name: str) -> Optional[TypeDescriptor]:
        return self._types.get(full_name.lstrip("."))

    def resolve(self, full_name: str) -> MessageDescriptor:
        """Return the message type with the given fully-qualified name."""
        found = self.find(full_name)
        if not isinstance(found, MessageDescriptor):
            raise TypeNotFoundError(full_name.lstrip("."))
        return found

    def resolve_enum(self, full_name: str) -> EnumDescriptor:
        found = self.find(full_name)
        if not isinstance(found, EnumDescriptor):
            raise TypeNotFoundError(full_name.lstrip("."))
        return found

    def __contains__(self, full_name: str) -> bool:
        return self.find(full_name) is not None

    # -- pass 1: collect names --

    def _collect(self) -> None:
        for file in self._set.files:
            for msg in file.messages:
                self._collect_message(msg, file)
            for enum in file.enums:
                self._register(enum.full_name, enum, file)

    def _collect_message(self, msg: MessageDescriptor, file: FileDescriptor) -> None:
        self._all_messages.append(msg)
        self._register(msg.full_name, msg, file)
        for nested in msg.nested_messages:
            self._collect_message(nested, file)
        for enum in msg.nested_enums:
            self._register(enum.full_name, enum, file)

    def _register(self, full_name: str, descriptor: TypeDescriptor, file: FileDescriptor) -> None:
        if full_name not in self._types:
            self._types[full_name] = descriptor
            return
        if self._duplicate_policy == DuplicatePolicy.ERROR:
            raise SchemaParseError(
                f"Duplicate type name '{full_name}' (again in file '{file.name}')"
            )
        self._log.warning(
            "Duplicate type name '%s' in file '%s' ignored; first definition wins",
            full_name,
            file.name,
        )

    # -- pass 2: bind field references --

    def _bind(self) -> None:
        for msg in self._all_messages:
            for fd in msg.fields:
                self._bind_field(fd, msg)
        for msg in self._all_messages:
            for fd in msg.fields:
                fd.is_map = (
                    fd.is_repeated
                    and fd.kind == FieldKind.MESSAGE
                    and fd.message_type is not None
                    and fd.message_type.is_map_entry
                )
                fd.is_packed = fd.is_repeated and fd.kind is not None and fd.kind.is_packable

    def _bind_field(self, fd: FieldDescriptor, owner: MessageDescriptor) -> None:
        if fd.kind is not None and fd.kind not in (FieldKind.MESSAGE, FieldKind.GROUP, FieldKind.ENUM):
            return
        where = f"{owner.full_name}.{fd.name}"
        target = self._lookup_scoped(fd.type_name, owner.full_name)
        if target is None:
            raise TypeNotFoundError(fd.type_name.lstrip("."), field_name=where)

        if fd.kind is None:
            fd.kind = FieldKind.ENUM if isinstance(target, EnumDescriptor) else FieldKind.MESSAGE

        if fd.kind == FieldKind.ENUM:
            if not isinstance(target, EnumDescriptor):
                raise TypeNotFoundError(f"{target.full_name} (expected an enum)", field_name=where)
            fd.enum_type = target
        else:
            if not isinstance(target, MessageDescriptor):
                raise TypeNotFoundError(f"{target.full_name} (expected a message)", field_name=where)
            fd.message_type = target

    def _lookup_scoped(self, type_name: str, scope: str) -> Optional[TypeDescriptor]:
        """Resolve a field's type name as seen from inside `scope`.

        Absolute names (leading dot) are looked up as-is; relative names are
        tried from the innermost enclosing scope outward.
        """
        if type_name.startswith("."):
            return self._types.get(type_name[1:])
        for candidate in _scope_candidates(type_name, scope):
            found = self._types.get(candidate)
            if found is not None:
                return found
        return None


def _scope_candidates(type_name: str, scope: str) -> Iterator[str]:
    parts = scope.split(".") if scope else []
    while parts:
        yield ".".join(parts + [type_name])
        parts.pop()
    yield type_name
