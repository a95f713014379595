import pytest

from proto_dynamic.decoder import SCALAR_READERS, WireDecoder, decode_message
from proto_dynamic.errors import (
    DepthExceededError,
    GroupMismatchError,
    InvalidWireTypeError,
    TruncatedDataError,
    TruncatedVarintError,
    WireFormatError,
)
from proto_dynamic.models import (
    BytesValue,
    FieldKind,
    MapValue,
    MessageValue,
    RepeatedValue,
    ScalarValue,
)
from proto_dynamic.wire.reader import WireType
from schemas import PACKAGE
from wirebuild import END_GROUP, FIXED32, LEN, START_GROUP, len_field, tag, varint, varint_field

SIMPLE = f"{PACKAGE}.SimpleMessage"
COMPLEX = f"{PACKAGE}.ComplexMessage"
TREE = f"{PACKAGE}.TreeNode"


def _tree(message_class, levels: int):
    node_cls = message_class(TREE)
    root = node_cls(label="level-0")
    node = root
    for i in range(1, levels):
        node.child.label = f"level-{i}"
        node = node.child
    return root.SerializeToString()


class TestDispatchTables:
    def test_every_scalar_kind_has_a_reader(self):
        composite = {FieldKind.MESSAGE, FieldKind.GROUP}
        assert set(SCALAR_READERS) == set(FieldKind) - composite


class TestScalars:
    def test_decodes_every_scalar_kind(self, registry, message_class):
        msg = message_class(SIMPLE)(
            param_01="first parameter",
            param_02=True,
            param_03=b"\x00\x01\x02",
            param_04=-32,
            param_05=-32321323412,
            param_06=10,
            param_07=2000000,
            param_08=12,
            param_09=-391,
            param_10=88888,
            param_11=32412141431,
            param_12=33224,
            param_13=-213123,
            param_14=-0.25,
            param_15=-0.000002,
        )
        value = decode_message(registry, SIMPLE, msg.SerializeToString())

        assert value.type_name == SIMPLE
        fields = value.fields
        assert fields[1] == ScalarValue(FieldKind.STRING, "first parameter")
        assert fields[2] == ScalarValue(FieldKind.BOOL, True)
        assert fields[3] == BytesValue(b"\x00\x01\x02")
        assert fields[4].value == -32
        assert fields[5].value == -32321323412
        assert fields[6].value == 10
        assert fields[7].value == 2000000
        assert fields[8].value == 12
        assert fields[9].value == -391
        assert fields[10].value == 88888
        assert fields[11].value == 32412141431
        assert fields[12].value == 33224
        assert fields[13].value == -213123
        assert fields[14].value == -0.25
        assert fields[15].value == -0.000002
        assert value.unknown_fields == []

    def test_empty_payload_has_no_fields(self, registry):
        assert decode_message(registry, SIMPLE, b"").fields == {}

    def test_last_scalar_occurrence_wins(self, registry):
        data = varint_field(4, 1) + varint_field(4, 2)
        assert decode_message(registry, SIMPLE, data).fields[4].value == 2

    def test_zero_values_present_on_wire_are_kept(self, registry):
        data = varint_field(4, 0) + len_field(1, b"")
        fields = decode_message(registry, SIMPLE, data).fields
        assert fields[4].value == 0
        assert fields[1].value == ""

    def test_invalid_utf8_string(self, registry):
        with pytest.raises(WireFormatError) as exc:
            decode_message(registry, SIMPLE, len_field(1, b"\xff\xfe"))
        assert exc.value.field_number == 1
        assert exc.value.field_name == "param_01"


class TestUnknownFields:
    def test_unknown_field_is_kept_and_decoding_continues(self, registry, message_class):
        known = message_class(SIMPLE)(param_01="kept", param_04=7).SerializeToString()
        extra = varint_field(99, 300)
        value = decode_message(registry, SIMPLE, extra + known)

        assert value.fields[1].value == "kept"
        assert value.fields[4].value == 7
        assert len(value.unknown_fields) == 1
        unknown = value.unknown_fields[0]
        assert unknown.number == 99
        assert unknown.wire_type == WireType.VARINT
        assert unknown.data == varint(300)
        assert unknown.offset == 0

    def test_unknown_group_is_skipped_whole(self, registry):
        group = tag(50, START_GROUP) + varint_field(1, 1) + tag(50, END_GROUP)
        value = decode_message(registry, SIMPLE, group + varint_field(4, 5))
        assert value.fields[4].value == 5
        assert value.unknown_fields[0].wire_type == WireType.START_GROUP

    def test_deeply_nested_unknown_groups_hit_the_depth_limit(self, registry):
        data = tag(99, START_GROUP) * 5000 + tag(99, END_GROUP) * 5000
        with pytest.raises(DepthExceededError) as exc:
            WireDecoder(max_depth=2).decode(registry.resolve(SIMPLE), data)
        assert exc.value.field_number == 99
        assert exc.value.type_name == SIMPLE

    def test_deeply_nested_unknown_groups_without_limit(self, registry):
        data = tag(99, START_GROUP) * 5000 + tag(99, END_GROUP) * 5000
        value = WireDecoder(max_depth=None).decode(registry.resolve(SIMPLE), data)
        assert len(value.unknown_fields) == 1
        assert value.unknown_fields[0].data == data[len(tag(99, START_GROUP)):]

    def test_unknown_groups_count_toward_message_depth(self, registry):
        # one nested message plus one unknown group reaches depth 2
        inner = tag(99, START_GROUP) + tag(99, END_GROUP)
        data = len_field(2, inner)
        tree = registry.resolve(TREE)
        assert WireDecoder(max_depth=2).decode(tree, data).fields[2].unknown_fields[0].number == 99
        with pytest.raises(DepthExceededError):
            WireDecoder(max_depth=1).decode(tree, data)


class TestRepeated:
    def test_packed_and_unpacked_occurrences_merge_in_arrival_order(self, registry, message_class):
        packed = message_class(COMPLEX)(scores=[1, 2, 3]).SerializeToString()
        data = packed + varint_field(5, 4) + packed
        value = decode_message(registry, COMPLEX, data)

        scores = value.fields[5]
        assert isinstance(scores, RepeatedValue)
        assert [item.value for item in scores.items] == [1, 2, 3, 4, 1, 2, 3]

    def test_repeated_strings(self, registry, message_class):
        data = message_class(COMPLEX)(param_01=["one", "two", "three"]).SerializeToString()
        items = decode_message(registry, COMPLEX, data).fields[1].items
        assert [item.value for item in items] == ["one", "two", "three"]

    def test_empty_packed_run(self, registry):
        value = decode_message(registry, COMPLEX, len_field(5, b""))
        assert value.fields[5] == RepeatedValue([])

    def test_packed_run_cut_mid_varint(self, registry):
        with pytest.raises(TruncatedVarintError):
            decode_message(registry, COMPLEX, len_field(5, b"\x01\x80"))

    def test_unpacking_follows_the_registry_flag(self, registry):
        registry.resolve(COMPLEX).field_by_name("scores").is_packed = False
        with pytest.raises(InvalidWireTypeError):
            decode_message(registry, COMPLEX, len_field(5, b"\x01"))


class TestMaps:
    def test_every_occurrence_is_kept_in_order(self, registry, message_class):
        cls = message_class(COMPLEX)
        data = cls(param_02={"season": "red"}).SerializeToString()
        data += cls(param_02={"season": "blue"}).SerializeToString()
        entries = decode_message(registry, COMPLEX, data).fields[2]

        assert isinstance(entries, MapValue)
        assert [(k.value, v.value) for k, v in entries.entries] == [("season", "red"), ("season", "blue")]

    def test_missing_key_and_value_default_to_zero(self, registry):
        data = len_field(6, b"") + len_field(7, b"")
        fields = decode_message(registry, COMPLEX, data).fields
        counts_key, counts_value = fields[6].entries[0]
        assert counts_key == ScalarValue(FieldKind.INT64, 0)
        assert counts_value == ScalarValue(FieldKind.INT32, 0)
        flags_key, flags_value = fields[7].entries[0]
        assert flags_key == ScalarValue(FieldKind.BOOL, False)
        assert flags_value == MessageValue(type_name=f"{PACKAGE}.SubMessage")

    def test_map_with_wrong_wire_type(self, registry):
        with pytest.raises(InvalidWireTypeError):
            decode_message(registry, COMPLEX, varint_field(2, 1))


class TestNestedMessages:
    def test_recursive_type_three_levels(self, registry, message_class):
        value = decode_message(registry, TREE, _tree(message_class, 3))
        assert value.fields[1].value == "level-0"
        child = value.fields[2]
        assert child.fields[1].value == "level-1"
        assert child.fields[2].fields[1].value == "level-2"
        assert 2 not in child.fields[2].fields

    def test_depth_limit_allows_nesting_up_to_the_limit(self, registry, message_class):
        root = registry.resolve(TREE)
        value = WireDecoder(max_depth=2).decode(root, _tree(message_class, 3))
        assert value.fields[2].fields[2].fields[1].value == "level-2"

    def test_depth_limit_exceeded(self, registry, message_class):
        root = registry.resolve(TREE)
        with pytest.raises(DepthExceededError) as exc:
            WireDecoder(max_depth=2).decode(root, _tree(message_class, 4))
        assert exc.value.type_name == TREE

    def test_no_depth_limit(self, registry):
        data = len_field(1, b"leaf")
        for _ in range(150):
            data = len_field(2, data)
        value = WireDecoder(max_depth=None).decode(registry.resolve(TREE), data)
        for _ in range(150):
            value = value.fields[2]
        assert value.fields[1].value == "leaf"

    def test_no_depth_limit_still_fails_cleanly_past_the_interpreter_limit(self, registry):
        data = len_field(1, b"leaf")
        for _ in range(5000):
            data = len_field(2, data)
        with pytest.raises(DepthExceededError) as exc:
            WireDecoder(max_depth=None).decode(registry.resolve(TREE), data)
        assert exc.value.type_name == TREE

    def test_repeated_singular_message_occurrences_merge(self, registry):
        first = len_field(2, len_field(1, b"a"))
        second = len_field(2, len_field(2, len_field(1, b"b")))
        child = decode_message(registry, TREE, first + second).fields[2]
        assert child.fields[1].value == "a"
        assert child.fields[2].fields[1].value == "b"

    def test_cross_file_message(self, registry, message_class):
        cls = message_class(f"{PACKAGE}.ImportMessage")
        msg = cls()
        msg.param_01.seconds = 1700000000
        msg.param_02.param_01 = 1
        msg.param_02.param_02 = "this is nested!"
        value = decode_message(registry, f"{PACKAGE}.ImportMessage", msg.SerializeToString())

        assert value.fields[1].type_name == "google.protobuf.Timestamp"
        assert value.fields[1].fields[1].value == 1700000000
        assert value.fields[2].fields[2].value == "this is nested!"


class TestGroups:
    def test_group_round_trip(self, registry, message_class):
        cls = message_class("legacy.SearchResponse")
        msg = cls(total=2)
        msg.result.add(url="https://a", title="A")
        msg.result.add(url="https://b")
        value = decode_message(registry, "legacy.SearchResponse", msg.SerializeToString())

        results = value.fields[1].items
        assert [r.fields[1].value for r in results] == ["https://a", "https://b"]
        assert 2 not in results[1].fields
        assert value.fields[2].value == 2

    def test_start_group_without_end(self, registry):
        data = tag(1, START_GROUP) + len_field(1, b"x")
        with pytest.raises(GroupMismatchError) as exc:
            decode_message(registry, "legacy.SearchResponse", data)
        assert exc.value.field_number == 1
        assert exc.value.offset == 0

    def test_end_group_for_another_field(self, registry):
        data = tag(1, START_GROUP) + len_field(1, b"x") + tag(3, END_GROUP)
        with pytest.raises(GroupMismatchError):
            decode_message(registry, "legacy.SearchResponse", data)

    def test_stray_end_group(self, registry):
        with pytest.raises(GroupMismatchError):
            decode_message(registry, "legacy.SearchResponse", tag(2, END_GROUP))


class TestMalformedInput:
    def test_cut_mid_varint(self, registry, message_class):
        data = message_class(SIMPLE)(param_05=-32321323412).SerializeToString()
        with pytest.raises(TruncatedVarintError) as exc:
            decode_message(registry, SIMPLE, data[:-3])
        assert exc.value.field_number == 5
        assert exc.value.field_name == "param_05"
        assert exc.value.type_name == SIMPLE

    def test_length_prefix_past_the_end(self, registry):
        data = tag(1, LEN) + varint(10) + b"short"
        with pytest.raises(TruncatedDataError) as exc:
            decode_message(registry, SIMPLE, data)
        assert exc.value.offset == 1
        assert exc.value.field_number == 1

    def test_truncated_fixed32(self, registry):
        with pytest.raises(TruncatedDataError):
            decode_message(registry, SIMPLE, tag(8, FIXED32) + b"\x01\x02")

    def test_invalid_wire_type(self, registry):
        with pytest.raises(InvalidWireTypeError):
            decode_message(registry, SIMPLE, tag(1, 6))

    def test_wire_type_not_matching_field_kind(self, registry):
        with pytest.raises(InvalidWireTypeError) as exc:
            decode_message(registry, SIMPLE, varint_field(1, 5))
        assert exc.value.field_name == "param_01"

    def test_errors_in_nested_messages_report_absolute_offsets(self, registry):
        inner = tag(1, LEN) + varint(9) + b"ab"
        data = len_field(2, inner)
        with pytest.raises(TruncatedDataError) as exc:
            decode_message(registry, TREE, data)
        assert exc.value.offset == 3
        assert exc.value.field_name == "label"
