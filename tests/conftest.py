import pytest
from google.protobuf import descriptor_pool, message_factory

from proto_dynamic.registry.registry import Registry
from schemas import (
    COMMON_PROTO,
    LEGACY_PROTO,
    SAMPLE_PROTO,
    descriptor_set_bytes,
    parse_file,
    timestamp_file,
)


@pytest.fixture
def schema_bytes() -> bytes:
    # Files that define referenced types come after the files using them.
    return descriptor_set_bytes(
        parse_file(SAMPLE_PROTO),
        parse_file(LEGACY_PROTO),
        parse_file(COMMON_PROTO),
        timestamp_file(),
    )


@pytest.fixture
def registry(schema_bytes) -> Registry:
    return Registry.build(schema_bytes)


@pytest.fixture
def message_class():
    """Reference encoder: generated classes for the sample schema."""
    pool = descriptor_pool.DescriptorPool()
    for fdp in (timestamp_file(), parse_file(COMMON_PROTO), parse_file(SAMPLE_PROTO), parse_file(LEGACY_PROTO)):
        pool.AddSerializedFile(fdp.SerializeToString())

    def get(name: str):
        return message_factory.GetMessageClass(pool.FindMessageTypeByName(name))

    return get
