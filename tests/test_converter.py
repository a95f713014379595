import base64
import json
import logging

import pytest

from proto_dynamic.converter import (
    ConversionOptions,
    convert,
    convert_cloud_event,
    convert_raw,
    write_json,
)
from proto_dynamic.errors import (
    DepthExceededError,
    EnvelopeError,
    SchemaFetchError,
    TypeNotFoundError,
)
from schemas import PACKAGE

SIMPLE = f"{PACKAGE}.SimpleMessage"


@pytest.fixture
def schema_file(tmp_path, schema_bytes):
    path = tmp_path / "sample.desc"
    path.write_bytes(schema_bytes)
    return path


@pytest.fixture
def composed_payload(message_class):
    msg = message_class(f"{PACKAGE}.ComposedMessage")()
    msg.param_01.param_01 = "composed"
    msg.param_01.param_05 = 1 << 40
    msg.param_02.param_02["key"] = "value"
    msg.param_02.param_03_string = "chosen"
    return msg.SerializeToString()


class TestConvert:
    def test_nested_message(self, schema_bytes, composed_payload):
        document = convert(schema_bytes, f"{PACKAGE}.ComposedMessage", composed_payload)
        assert document == {
            "param_01": {"param_01": "composed", "param_05": "1099511627776"},
            "param_02": {"param_02": {"key": "value"}, "param_03_string": "chosen"},
        }

    def test_unknown_root_type(self, schema_bytes):
        with pytest.raises(TypeNotFoundError):
            convert(schema_bytes, f"{PACKAGE}.Nope", b"")

    def test_options_are_applied(self, schema_bytes, composed_payload):
        options = ConversionOptions(use_json_names=True, max_depth=0)
        with pytest.raises(DepthExceededError):
            convert(schema_bytes, f"{PACKAGE}.ComposedMessage", composed_payload, options)

        options = ConversionOptions(use_json_names=True)
        document = convert(schema_bytes, f"{PACKAGE}.ComposedMessage", composed_payload, options)
        assert document["param02"]["param03String"] == "chosen"

    def test_logs_steps(self, schema_bytes, caplog):
        with caplog.at_level(logging.INFO):
            convert(schema_bytes, SIMPLE, b"\x20\x01")
        assert SIMPLE in caplog.text


class TestConvertRaw:
    def test_file_uri(self, tmp_path, schema_file, message_class):
        source = tmp_path / "payload.bin"
        source.write_bytes(message_class(SIMPLE)(param_01="raw", param_13=-5).SerializeToString())

        document = convert_raw(str(source), f"{schema_file.as_uri()}#{SIMPLE}")
        assert document == {"param_01": "raw", "param_13": "-5"}

    def test_default_package(self, tmp_path, schema_file):
        source = tmp_path / "payload.bin"
        source.write_bytes(b"\x20\x01")

        options = ConversionOptions(default_package=PACKAGE)
        assert convert_raw(str(source), f"{schema_file}#SimpleMessage", options) == {"param_04": 1}

    def test_uri_without_type(self, tmp_path, schema_file):
        source = tmp_path / "payload.bin"
        source.write_bytes(b"")
        with pytest.raises(SchemaFetchError):
            convert_raw(str(source), str(schema_file))


def _write_event(path, schema_uri, payload):
    event = {
        "specversion": "1.0",
        "id": "0001",
        "source": "/sample/producer",
        "type": "sample.created",
        "datacontenttype": "application/protobuf",
        "data_base64": base64.b64encode(payload).decode("ascii"),
    }
    if schema_uri:
        event["dataschema"] = schema_uri
    path.write_text(json.dumps(event), encoding="utf-8")


class TestConvertCloudEvent:
    def test_reembeds_payload_as_json(self, tmp_path, schema_file):
        source = tmp_path / "event.json"
        _write_event(source, f"{schema_file.as_uri()}#{SIMPLE}", b"\x20\x07")

        container = convert_cloud_event(str(source))
        assert container["data"] == {"param_04": 7}
        assert container["datacontenttype"] == "application/json"
        assert container["id"] == "0001"
        assert "data_base64" not in container

    def test_schema_uri_overrides_dataschema(self, tmp_path, schema_file):
        source = tmp_path / "event.json"
        _write_event(source, "file:///nowhere.desc#x.Y", b"\x20\x07")

        container = convert_cloud_event(str(source), f"{schema_file}#{SIMPLE}")
        assert container["data"] == {"param_04": 7}

    def test_no_schema_anywhere(self, tmp_path):
        source = tmp_path / "event.json"
        _write_event(source, None, b"\x20\x07")
        with pytest.raises(EnvelopeError, match="dataschema"):
            convert_cloud_event(str(source))


class TestWriteJson:
    def test_to_file(self, tmp_path):
        target = tmp_path / "out.json"
        target.write_text("stale content that is longer than the document")
        write_json({"name": "ünïcode"}, str(target))
        assert json.loads(target.read_text(encoding="utf-8")) == {"name": "ünïcode"}

    def test_to_stdout(self, capsys):
        write_json({"a": 1}, indent=2)
        assert capsys.readouterr().out == '{\n  "a": 1\n}\n'
