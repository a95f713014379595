"""Schema references: `<location>#<message type>` URIs and fetching their bytes."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import unquote, urlparse

from proto_dynamic.errors import SchemaFetchError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 30


@dataclass
class SchemaReference:
    location: str
    type_name: str


def parse_schema_uri(uri: str, default_package: Optional[str] = None) -> SchemaReference:
    """Split a schema URI into its descriptor location and root message type.

    The fragment names the message type. A simple name (no dots) is qualified
    with `default_package` when one is given.
    """
    location, sep, fragment = uri.partition("#")
    if not sep or not fragment:
        raise SchemaFetchError(f"Schema URI '{uri}' has no '#<message type>' fragment")
    if not location:
        raise SchemaFetchError(f"Schema URI '{uri}' has no descriptor location")
    type_name = fragment.lstrip(".")
    if default_package and "." not in type_name:
        type_name = f"{default_package.strip('.')}.{type_name}"
    return SchemaReference(location=location, type_name=type_name)


def load_schema(location: str, include_paths: Optional[List[str]] = None) -> bytes:
    """Return serialized FileDescriptorSet bytes for a file path, file:// or http(s):// URI.

    A `.proto` source file is compiled on the fly with protoc.
    """
    parsed = urlparse(location)
    if parsed.scheme in ("http", "https"):
        return _fetch_url(location)
    if parsed.scheme == "file":
        path = unquote(parsed.netloc + parsed.path)
    elif parsed.scheme and len(parsed.scheme) > 1:
        raise SchemaFetchError(f"Unsupported schema URI scheme '{parsed.scheme}' in '{location}'")
    else:
        # plain path (a single-letter "scheme" is a Windows drive)
        path = location

    if path.endswith(".proto"):
        return compile_proto(path, include_paths)
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise SchemaFetchError(f"Cannot read descriptor set '{path}': {e}") from e
    logger.info("Read file descriptor set (path: %s, size: %d bytes)", path, len(data))
    return data


def _fetch_url(url: str) -> bytes:
    try:
        with urllib.request.urlopen(url, timeout=FETCH_TIMEOUT_SECONDS) as response:
            data = response.read()
    except (urllib.error.URLError, OSError) as e:
        raise SchemaFetchError(f"Cannot fetch descriptor set from '{url}': {e}") from e
    logger.info("Fetched file descriptor set (url: %s, size: %d bytes)", url, len(data))
    return data


def compile_proto(proto_path: str, include_paths: Optional[List[str]] = None) -> bytes:
    """Invoke protoc to turn a .proto file (and its imports) into a descriptor set."""
    includes = [os.path.dirname(os.path.abspath(proto_path))] + list(include_paths or [])

    # de-dup while preserving order
    seen = set()
    inc_args: List[str] = []
    for inc in includes:
        if inc and inc not in seen:
            seen.add(inc)
            inc_args.extend(["-I", inc])

    with tempfile.TemporaryDirectory() as td:
        desc_path = os.path.join(td, "descriptor_set.pb")
        cmd = ["protoc", "--include_imports", f"--descriptor_set_out={desc_path}"] + inc_args + [proto_path]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError as e:
            raise SchemaFetchError(
                "'protoc' not found. Please install Protocol Buffers compiler and ensure it is in PATH."
            ) from e
        except subprocess.CalledProcessError as e:
            raise SchemaFetchError(f"protoc failed: {e.stderr.decode('utf-8', errors='ignore')}") from e

        with open(desc_path, "rb") as f:
            data = f.read()
    logger.info("Compiled %s into a descriptor set (%d bytes)", proto_path, len(data))
    return data
