from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from proto_dynamic.converter import (
    ConversionOptions,
    convert_cloud_event,
    convert_raw,
    write_json,
)
from proto_dynamic.decoder import DEFAULT_MAX_DEPTH
from proto_dynamic.errors import ConversionError
from proto_dynamic.registry.registry import DuplicatePolicy


def run(
    source_path: str,
    target_path: Optional[str] = None,
    schema_uri: Optional[str] = None,
    raw: bool = False,
    options: Optional[ConversionOptions] = None,
    indent: Optional[int] = None,
) -> None:
    """Main pipeline: read source, convert payload, write JSON."""
    if raw:
        if not schema_uri:
            raise ValueError("--raw requires a schema URI (--schema-uri)")
        document = convert_raw(source_path, schema_uri, options)
    else:
        document = convert_cloud_event(source_path, schema_uri, options)
    write_json(document, target_path, indent)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proto-dynamic",
        description="Convert a protobuf binary to JSON using a runtime descriptor set",
    )
    parser.add_argument(
        "-s", "--source-path",
        required=True,
        help="File holding the CloudEvent in JSON format (or the raw protobuf binary with --raw)",
    )
    parser.add_argument(
        "-t", "--target-path",
        help="File to write the JSON to (overwritten); printed to the console if omitted",
    )
    parser.add_argument(
        "-r", "--raw",
        action="store_true",
        help="Treat the source as a raw protobuf binary instead of a CloudEvent",
    )
    parser.add_argument(
        "-u", "--schema-uri",
        help="Descriptor set URI with the message type as fragment (<uri>#<type>); "
             "required with --raw, overrides the event's 'dataschema' otherwise",
    )
    parser.add_argument(
        "-p", "--package",
        help="Package used to qualify a simple message type name in the schema URI",
    )
    parser.add_argument(
        "-I", "--proto-path",
        action="append",
        default=[],
        help="Extra include directory when the schema URI points at a .proto file",
    )
    parser.add_argument(
        "--json-names",
        action="store_true",
        help="Use lowerCamelCase JSON names instead of the proto field names",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"Maximum message nesting depth, 0 or less for no limit (default: {DEFAULT_MAX_DEPTH})",
    )
    parser.add_argument(
        "--strict-types",
        action="store_true",
        help="Fail on duplicate type names in the descriptor set instead of keeping the first",
    )
    parser.add_argument(
        "--indent",
        type=int,
        help="Pretty-print the JSON with this indentation",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log each conversion step to stderr",
    )
    return parser


def main(argv: Optional[List[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.raw and not args.schema_uri:
        parser.error("--raw (-r) was specified without a schema URI (--schema-uri)")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    options = ConversionOptions(
        max_depth=args.max_depth if args.max_depth > 0 else None,
        use_json_names=args.json_names,
        duplicate_policy=DuplicatePolicy.ERROR if args.strict_types else DuplicatePolicy.FIRST_WINS,
        default_package=args.package,
        include_paths=args.proto_path,
    )

    try:
        run(
            args.source_path,
            target_path=args.target_path,
            schema_uri=args.schema_uri,
            raw=args.raw,
            options=options,
            indent=args.indent,
        )
    except (ConversionError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
