"""Conversion pipeline: registry -> wire decoder -> JSON projector.

`convert` is the pure core, working on in-memory bytes. `convert_raw` and
`convert_cloud_event` add the file, envelope and schema-fetch plumbing
around it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from proto_dynamic.decoder import DEFAULT_MAX_DEPTH, WireDecoder
from proto_dynamic.envelope import embed_json, parse_cloud_event
from proto_dynamic.errors import EnvelopeError
from proto_dynamic.projector import JsonProjector
from proto_dynamic.registry.registry import DuplicatePolicy, Registry
from proto_dynamic.schema_source import load_schema, parse_schema_uri

logger = logging.getLogger(__name__)


@dataclass
class ConversionOptions:
    max_depth: Optional[int] = DEFAULT_MAX_DEPTH
    use_json_names: bool = False
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.FIRST_WINS
    default_package: Optional[str] = None
    unknown_fields_key: Optional[str] = None
    include_paths: Optional[List[str]] = None


def convert(
    schema_bytes: bytes,
    root_type_name: str,
    payload_bytes: bytes,
    options: Optional[ConversionOptions] = None,
    log: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Decode `payload_bytes` as `root_type_name` and return its JSON tree."""
    options = options or ConversionOptions()
    log = log or logger

    registry = Registry.build(schema_bytes, duplicate_policy=options.duplicate_policy, log=log)
    root = registry.resolve(root_type_name)
    log.info("Retrieved descriptor for message (type: %s)", root.full_name)

    value = WireDecoder(max_depth=options.max_depth, log=log).decode(root, payload_bytes)
    projector = JsonProjector(
        use_json_names=options.use_json_names,
        unknown_fields_key=options.unknown_fields_key,
        log=log,
    )
    document = projector.project(value, root)
    log.info("Projected %s into JSON (%d top-level keys)", root.full_name, len(document))
    return document


def convert_raw(
    source_path: str,
    schema_uri: str,
    options: Optional[ConversionOptions] = None,
) -> Dict[str, Any]:
    """Convert a file holding a raw protobuf binary described by `schema_uri`."""
    options = options or ConversionOptions()
    payload = Path(source_path).read_bytes()
    logger.info("Read file (path: %s, size: %d bytes)", source_path, len(payload))

    ref = parse_schema_uri(schema_uri, options.default_package)
    logger.info("Resolved schema URI components (location: %s, type: %s)", ref.location, ref.type_name)
    schema = load_schema(ref.location, options.include_paths)
    return convert(schema, ref.type_name, payload, options)


def convert_cloud_event(
    source_path: str,
    schema_uri: Optional[str] = None,
    options: Optional[ConversionOptions] = None,
) -> Dict[str, Any]:
    """Convert the payload of a JSON CloudEvent file and re-embed it as JSON.

    The schema reference comes from the event's `dataschema` attribute unless
    `schema_uri` overrides it.
    """
    options = options or ConversionOptions()
    event = parse_cloud_event(Path(source_path).read_text(encoding="utf-8"))
    logger.info("Read cloud event (path: %s, payload: %d bytes)", source_path, len(event.payload))

    uri = schema_uri or event.data_schema
    if not uri:
        raise EnvelopeError("CloudEvent has no 'dataschema' and no schema URI was given")
    ref = parse_schema_uri(uri, options.default_package)
    logger.info("Resolved schema URI components (location: %s, type: %s)", ref.location, ref.type_name)
    schema = load_schema(ref.location, options.include_paths)

    document = convert(schema, ref.type_name, event.payload, options)
    return embed_json(event, document)


def write_json(document: Dict[str, Any], target_path: Optional[str] = None, indent: Optional[int] = None) -> None:
    """Write the document to `target_path` (overwritten) or print it to stdout."""
    text = json.dumps(document, indent=indent, ensure_ascii=False)
    if target_path:
        Path(target_path).write_text(text, encoding="utf-8")
        logger.info("Wrote JSON document (path: %s, size: %d chars)", target_path, len(text))
    else:
        print(text)
