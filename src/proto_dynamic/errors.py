"""Exception hierarchy for schema parsing, wire decoding and JSON projection."""

from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base class for every error that aborts a conversion."""


class SchemaParseError(ConversionError):
    """Raised when the descriptor-set bytes are not a valid FileDescriptorSet."""


class TypeNotFoundError(ConversionError):
    """Raised when a message or enum type is missing from the descriptor set."""

    def __init__(self, type_name: str, field_name: Optional[str] = None):
        self.type_name = type_name
        self.field_name = field_name
        if field_name:
            super().__init__(
                f"Type '{type_name}' referenced by field '{field_name}' "
                f"not found in descriptor set"
            )
        else:
            super().__init__(f"Type '{type_name}' not found in descriptor set")


class WireFormatError(ConversionError):
    """Raised when payload bytes do not match the wire format implied by the schema."""

    def __init__(
        self,
        message: str,
        offset: Optional[int] = None,
        field_number: Optional[int] = None,
        field_name: Optional[str] = None,
        type_name: Optional[str] = None,
    ):
        self.offset = offset
        self.field_number = field_number
        self.field_name = field_name
        self.type_name = type_name
        self.reason = message
        super().__init__(self._describe())

    def _describe(self) -> str:
        context = []
        if self.offset is not None:
            context.append(f"offset {self.offset}")
        if self.field_number is not None:
            context.append(f"field {self.field_number}")
        if self.field_name:
            context.append(f"name '{self.field_name}'")
        if self.type_name:
            context.append(f"type '{self.type_name}'")
        if not context:
            return self.reason
        return f"{self.reason} ({', '.join(context)})"

    def with_context(self, field_name: Optional[str], type_name: Optional[str]) -> WireFormatError:
        """Fill in the field/type names if the raising layer did not know them."""
        if self.field_name is None:
            self.field_name = field_name
        if self.type_name is None:
            self.type_name = type_name
        self.args = (self._describe(),)
        return self


class TruncatedVarintError(WireFormatError):
    """The stream ended mid-varint, or the varint is longer than 10 bytes."""


class TruncatedDataError(WireFormatError):
    """A length prefix or fixed-width value runs past the end of the buffer."""


class InvalidWireTypeError(WireFormatError):
    """Unknown wire type, or a wire type that does not fit the field's kind."""


class GroupMismatchError(WireFormatError):
    """A start-group without a matching end-group, or a stray end-group."""


class DepthExceededError(WireFormatError):
    """Message nesting is deeper than the configured maximum."""


class UnsupportedFieldError(ConversionError):
    """Raised when the projector meets a field kind it cannot render."""


class EnvelopeError(ConversionError):
    """Raised when a CloudEvent envelope is malformed or lacks a payload."""


class SchemaFetchError(ConversionError):
    """Raised when the schema bytes cannot be obtained from their URI."""
