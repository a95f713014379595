"""Structured-mode JSON CloudEvents carrying a base64 protobuf payload."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict

from proto_dynamic.errors import EnvelopeError

JSON_CONTENT_TYPE = "application/json"


@dataclass
class CloudEvent:
    attributes: Dict[str, Any]
    payload: bytes

    @property
    def data_schema(self) -> str:
        return self.attributes.get("dataschema", "")


def parse_cloud_event(text: str) -> CloudEvent:
    """Parse a JSON CloudEvent and extract its binary payload from `data_base64`."""
    try:
        attributes = json.loads(text)
    except json.JSONDecodeError as e:
        raise EnvelopeError(f"CloudEvent is not valid JSON: {e}") from e
    if not isinstance(attributes, dict):
        raise EnvelopeError("CloudEvent must be a JSON object")

    encoded = attributes.get("data_base64")
    if encoded is None:
        raise EnvelopeError("CloudEvent has no 'data_base64' payload")
    try:
        payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise EnvelopeError(f"CloudEvent 'data_base64' is not valid base64: {e}") from e
    return CloudEvent(attributes=attributes, payload=payload)


def embed_json(event: CloudEvent, document: Dict[str, Any]) -> Dict[str, Any]:
    """Return the event attributes with the decoded JSON document as `data`."""
    container = {k: v for k, v in event.attributes.items() if k != "data_base64"}
    container["datacontenttype"] = JSON_CONTENT_TYPE
    container["data"] = document
    return container
