from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from fractions import Fraction

import pytest

from avrokit.primitives import CodecError
from avrokit.schema import (
    build_codec,
    from_signed_bytes,
    new_codec,
    precision_and_scale,
    to_signed_bytes,
    to_signed_fixed_bytes,
)
from avrokit.unions import union

UTC = timezone.utc


def roundtrip(schema, datum, encoded, decoded=None):
    codec = new_codec(schema)
    assert codec.binary_from_native(None, datum) == encoded
    value, rest = codec.native_from_binary(encoded)
    assert rest == b""
    assert value == (datum if decoded is None else decoded)


def test_schema_logical_type():
    codec = new_codec('{"type": "long", "logicalType": "timestamp-millis"}')
    assert codec.type_name.full_name == "long.timestamp-millis"
    with pytest.raises(CodecError, match="precision"):
        new_codec('{"type": "bytes", "logicalType": "decimal"}')
    with pytest.raises(CodecError, match="precision"):
        new_codec('{"type": "fixed", "size": 16, "logicalType": "decimal"}')


def test_string_logical_type_fallback():
    roundtrip('{"type": "string", "logicalType": "this_logical_type_does_not_exist"}', "test string", b"\x16test string")


def test_long_logical_type_fallback():
    roundtrip('{"type": "long", "logicalType": "this_logical_type_does_not_exist"}', 12345, b"\xf2\xc0\x01")


TS_MILLIS = datetime(2006, 1, 2, 15, 4, 5, 565000, tzinfo=UTC)
TS_MICROS = datetime(2006, 1, 2, 15, 4, 5, 565283, tzinfo=UTC)


def test_timestamp_millis():
    schema = '{"type": "long", "logicalType": "timestamp-millis"}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match="short buffer"):
        codec.native_from_binary(b"")
    with pytest.raises(CodecError, match="cannot transform binary timestamp-millis, expected datetime.datetime"):
        codec.binary_from_native(None, "test")
    roundtrip(schema, TS_MILLIS, b"\xfa\x82\xac\xba\x91\x42")


def test_timestamp_millis_union():
    schema = '{"type": ["null", {"type": "long", "logicalType": "timestamp-millis"}]}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match=r"allowed types: \[null long.timestamp-millis\]"):
        codec.binary_from_native(None, union("string", "test"))
    roundtrip(schema, union("long.timestamp-millis", TS_MILLIS), b"\x02\xfa\x82\xac\xba\x91\x42")


def test_timestamp_micros():
    schema = '{"type": "long", "logicalType": "timestamp-micros"}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match="short buffer"):
        codec.native_from_binary(b"")
    with pytest.raises(CodecError, match="cannot transform binary timestamp-micros, expected datetime.datetime"):
        codec.binary_from_native(None, "test")
    roundtrip(schema, TS_MICROS, b"\xc6\x8d\xf7\xe7\xaf\xd8\x84\x04")


def test_timestamp_micros_union():
    schema = '{"type": ["null", {"type": "long", "logicalType": "timestamp-micros"}]}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match=r"allowed types: \[null long.timestamp-micros\]"):
        codec.binary_from_native(None, union("string", "test"))
    roundtrip(schema, union("long.timestamp-micros", TS_MICROS), b"\x02\xc6\x8d\xf7\xe7\xaf\xd8\x84\x04")


def test_time_millis():
    schema = '{"type": "int", "logicalType": "time-millis"}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match="short buffer"):
        codec.native_from_binary(b"")
    with pytest.raises(CodecError, match="cannot transform to binary time-millis, expected datetime.timedelta"):
        codec.binary_from_native(None, "test")
    roundtrip(schema, timedelta(milliseconds=66904022), b"\xac\xff\xe6\x3f")


def test_time_millis_union():
    schema = '{"type": ["null", {"type": "int", "logicalType": "time-millis"}]}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match=r"allowed types: \[null int.time-millis\]"):
        codec.binary_from_native(None, union("string", "test"))
    roundtrip(schema, union("int.time-millis", timedelta(milliseconds=66904022)), b"\x02\xac\xff\xe6\x3f")


def test_time_micros():
    schema = '{"type": "long", "logicalType": "time-micros"}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match="short buffer"):
        codec.native_from_binary(b"")
    with pytest.raises(CodecError, match="cannot transform to binary time-micros, expected datetime.timedelta"):
        codec.binary_from_native(None, "test")
    roundtrip(schema, timedelta(microseconds=66904022566), b"\xcc\xf8\xd2\xbc\xf2\x03")


def test_time_micros_union():
    schema = '{"type": ["null", {"type": "long", "logicalType": "time-micros"}]}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match=r"allowed types: \[null long.time-micros\]"):
        codec.binary_from_native(None, union("string", "test"))
    roundtrip(schema, union("long.time-micros", timedelta(microseconds=66904022566)), b"\x02\xcc\xf8\xd2\xbc\xf2\x03")


def test_date():
    schema = '{"type": "int", "logicalType": "date"}'
    codec = new_codec(schema)
    with pytest.raises(CodecError, match="short buffer"):
        codec.native_from_binary(b"")
    with pytest.raises(CodecError, match="cannot transform to binary date, expected datetime.date, received str"):
        codec.binary_from_native(None, "test")
    roundtrip(schema, date(2006, 1, 2), b"\xbc\xcd\x01")
    assert codec.binary_from_native(None, datetime(2006, 1, 2, tzinfo=UTC)) == b"\xbc\xcd\x01"


def test_timestamp_text_round_trip():
    codec = new_codec('{"type": "long", "logicalType": "timestamp-millis"}')
    text = codec.textual_from_native(None, TS_MILLIS)
    assert text == b"1136214245565"
    assert codec.native_from_textual(text) == (TS_MILLIS, b"")


@pytest.mark.parametrize(
    "datum, decoded, encoded",
    [
        (Fraction(617, 50), Decimal("12.34"), b"\x04\x04\xd2"),
        (Fraction(-617, 50), Decimal("-12.34"), b"\x04\xfb\x2e"),
        (Fraction(0, 1), Decimal("0"), b"\x02\x00"),
    ],
)
def test_decimal_bytes(datum, decoded, encoded):
    roundtrip('{"type": "bytes", "logicalType": "decimal", "precision": 4, "scale": 2}', datum, encoded, decoded)


FIXED_DECIMAL = '{"type": "fixed", "size": 12, "logicalType": "decimal", "precision": 4, "scale": 2}'


@pytest.mark.parametrize(
    "datum, decoded, encoded",
    [
        (Fraction(617, 50), Decimal("12.34"), b"\x00" * 10 + b"\x04\xd2"),
        (Fraction(-617, 50), Decimal("-12.34"), b"\xff" * 10 + b"\xfb\x2e"),
        (Fraction(25, 4), Decimal("6.25"), b"\x00" * 10 + b"\x02\x71"),
        (Fraction(33, 100), Decimal("0.33"), b"\x00" * 11 + b"\x21"),
    ],
)
def test_decimal_fixed(datum, decoded, encoded):
    roundtrip(FIXED_DECIMAL, datum, encoded, decoded)


def test_decimal_fixed_zero_scale():
    codec = new_codec('{"type": "fixed", "size": 12, "logicalType": "decimal", "precision": 4, "scale": 0}')
    encoded = b"\x00" * 11 + b"\x0c"
    assert codec.binary_from_native(None, Fraction(617, 50)) == encoded
    assert codec.native_from_binary(encoded) == (Decimal(12), b"")


def test_decimal_bytes_in_record():
    schema = """{"type": "record", "name": "myrecord", "fields" : [
        {"name": "mydecimal", "type": "bytes", "logicalType": "decimal", "precision": 4, "scale": 2}]}"""
    roundtrip(schema, {"mydecimal": Fraction(617, 50)}, b"\x04\x04\xd2", {"mydecimal": Decimal("12.34")})


def test_decimal_rejects_non_number():
    codec = new_codec('{"type": "bytes", "logicalType": "decimal", "precision": 4, "scale": 2}')
    with pytest.raises(CodecError, match="expected decimal number"):
        codec.binary_from_native(None, "12.34")


def test_union_logical_type_example():
    codec = new_codec('["null", {"type": "long", "logicalType": "timestamp-millis"}]')
    moment = datetime(2006, 1, 2, 15, 4, 5, tzinfo=UTC)
    encoded = codec.binary_from_native(None, {"long.timestamp-millis": moment})
    decoded, _ = codec.native_from_binary(encoded)
    assert str(decoded["long.timestamp-millis"]) == "2006-01-02 15:04:05+00:00"


def test_precision_and_scale():
    assert precision_and_scale({"precision": 4, "scale": 2}) == (4, 2)
    assert precision_and_scale({"precision": 10}) == (10, 0)
    with pytest.raises(CodecError, match="without precision"):
        precision_and_scale({})
    with pytest.raises(CodecError, match="less than one"):
        precision_and_scale({"precision": 1})
    with pytest.raises(CodecError, match="less than zero"):
        precision_and_scale({"precision": 4, "scale": -1})
    with pytest.raises(CodecError, match="larger than precision"):
        precision_and_scale({"precision": 4, "scale": 5})
    with pytest.raises(CodecError, match="wrong precision type"):
        precision_and_scale({"precision": "4"})


@pytest.mark.parametrize(
    "number, data",
    [(0, b"\x00"), (1234, b"\x04\xd2"), (-1234, b"\xfb\x2e"), (128, b"\x00\x80"), (-128, b"\x80"), (-1, b"\xff")],
)
def test_signed_bytes(number, data):
    assert to_signed_bytes(number) == data
    assert from_signed_bytes(data) == number


def test_signed_bytes_round_trip():
    for number in range(-70000, 70000, 37):
        assert from_signed_bytes(to_signed_bytes(number)) == number
    assert from_signed_bytes(b"") == 0


def test_signed_fixed_bytes():
    assert to_signed_fixed_bytes(-1234, 12) == b"\xff" * 10 + b"\xfb\x2e"
    assert to_signed_fixed_bytes(1234, 4) == b"\x00\x00\x04\xd2"
    with pytest.raises(CodecError, match="does not fit"):
        to_signed_fixed_bytes(1 << 20, 2)


def test_unknown_type_name():
    with pytest.raises(CodecError, match="unknown type name"):
        new_codec('{"type":"flubber"}')


def test_invalid_schema_json():
    with pytest.raises(CodecError, match="cannot unmarshal schema"):
        new_codec("invalid-schema")
    with pytest.raises(CodecError, match="missing type"):
        new_codec("{}")


def test_schema_text_kept():
    assert new_codec('{"type":"long"}').schema == '{"type":"long"}'


@pytest.mark.parametrize("primitive", ["null", "boolean", "int", "long", "float", "double", "bytes", "string"])
def test_primitive_schema_forms(primitive):
    for schema in (f'"{primitive}"', f'{{"type":"{primitive}"}}', f'{{"type":"{primitive}","ignoredKey":"ignoredValue"}}'):
        assert new_codec(schema).type_name.full_name == primitive


def test_build_codec_with_empty_symtab():
    codec = build_codec({}, "", "long")
    assert codec.binary_from_native(None, 13) == b"\x1a"


def test_schema_weather():
    codec = new_codec("""
    {"type": "record", "name": "test.Weather", "doc": "A weather reading.",
     "fields": [
         {"name": "station", "type": "string", "order": "ignore"},
         {"name": "time", "type": "long"},
         {"name": "temp", "type": "int"}]}""")
    assert codec.type_name.full_name == "test.Weather"
    assert codec.binary_from_native(None, {"station": "a", "time": 1, "temp": 2}) == b"\x02a\x02\x04"


def test_schema_foo_bar_specific_record():
    codec = new_codec("""
    {"type": "record", "name": "FooBarSpecificRecord", "namespace": "org.apache.avro",
     "fields": [
        {"name": "id", "type": "int"},
        {"name": "name", "type": "string"},
        {"name": "nicknames", "type": {"type": "array", "items": "string"}},
        {"name": "relatedids", "type": {"type": "array", "items": "int"}},
        {"name": "typeEnum", "type": ["null", {"type": "enum", "name": "TypeEnum",
            "namespace": "org.apache.avro", "symbols" : ["a","b", "c"]}], "default": null}]}""")
    assert codec.type_name.full_name == "org.apache.avro.FooBarSpecificRecord"
    datum = {"id": 1, "name": "x", "nicknames": [], "relatedids": [], "typeEnum": {"org.apache.avro.TypeEnum": "c"}}
    assert codec.binary_from_native(None, datum) == b"\x02\x02x\x00\x00\x02\x04"


def test_schema_interop():
    codec = new_codec("""
    {"type": "record", "name":"Interop", "namespace": "org.apache.avro",
      "fields": [
          {"name": "intField", "type": "int"},
          {"name": "longField", "type": "long"},
          {"name": "stringField", "type": "string"},
          {"name": "boolField", "type": "boolean"},
          {"name": "floatField", "type": "float"},
          {"name": "doubleField", "type": "double"},
          {"name": "bytesField", "type": "bytes"},
          {"name": "nullField", "type": "null"},
          {"name": "arrayField", "type": {"type": "array", "items": "double"}},
          {"name": "mapField", "type": {"type": "map", "values":
            {"type": "record", "name": "Foo", "fields": [{"name": "label", "type": "string"}]}}},
          {"name": "unionField", "type": ["boolean", "double", {"type": "array", "items": "bytes"}]},
          {"name": "enumField", "type": {"type": "enum", "name": "Kind", "symbols": ["A","B","C"]}},
          {"name": "fixedField", "type": {"type": "fixed", "name": "MD5", "size": 16}},
          {"name": "recordField", "type": {"type": "record", "name": "Node",
            "fields": [
                {"name": "label", "type": "string"},
                {"name": "children", "type": {"type": "array", "items": "Node"}}]}}]}""")
    assert codec.type_name.full_name == "org.apache.avro.Interop"


def test_recursive_record_round_trip():
    codec = new_codec("""{"type": "record", "name": "Node", "fields": [
        {"name": "label", "type": "string"},
        {"name": "children", "type": {"type": "array", "items": "Node"}}]}""")
    datum = {"label": "a", "children": [{"label": "b", "children": []}]}
    encoded = codec.binary_from_native(None, datum)
    assert codec.native_from_binary(encoded) == (datum, b"")


def test_fixed_name_can_be_used_later():
    schema = """{"type":"record","name":"record1","fields":[
        {"name":"field1","type":{"type":"fixed","name":"fixed_4","size":4}},
        {"name":"field2","type":"fixed_4"}]}"""
    codec = new_codec(schema)
    assert codec.binary_from_native(None, {"field1": b"abcd", "field2": b"efgh"}) == b"abcdefgh"


def test_fixed_size_mismatch():
    codec = new_codec('{"type":"fixed","name":"f","size":4}')
    with pytest.raises(CodecError, match="size"):
        codec.binary_from_native(None, b"abc")


def test_map_value_type_enum():
    schema = '{"type":"map","values":{"type":"enum","name":"foo","symbols":["alpha","bravo"]}}'
    roundtrip(schema, {"someKey": "bravo"}, b"\x02\x0esomeKey\x02\x00")


def test_enum_errors_and_text():
    codec = new_codec('{"type":"enum","name":"foo","symbols":["alpha","bravo"]}')
    with pytest.raises(CodecError, match="member of symbols"):
        codec.binary_from_native(None, "charlie")
    assert codec.textual_from_native(None, "bravo") == b'"bravo"'
    assert codec.native_from_textual(b'"alpha"') == ("alpha", b"")


def test_map_value_type_record():
    schema = """{"type":"map","values":{"type":"record","name":"foo","fields":[
        {"name":"field1","type":"string"},{"name":"field2","type":"int"}]}}"""
    codec = new_codec(schema)
    datum = {"map-key": {"field1": "unlucky", "field2": 13}}
    assert codec.binary_from_native(None, datum) == b"\x02\x0emap-key\x0eunlucky\x1a\x00"


def test_array_field_in_record():
    codec = new_codec('{"type":"record","name":"record1","fields":[{"name":"field1","type":"array","items":"long"}]}')
    assert codec.binary_from_native(None, {"field1": [3]}) == b"\x02\x06\x00"


def test_default_value_null_union():
    codec = new_codec("""
    {"namespace": "universe.of.things", "type": "record", "name": "Thing",
     "fields": [{"name": "attributes", "type": ["null", {"type": "array", "items": {
        "namespace": "universe.of.things", "type": "record", "name": "attribute",
        "fields": [{"name": "name", "type": "string"}, {"name": "value", "type": "string"}]}}],
        "default": "null"}]}""")
    assert codec.type_name.full_name == "universe.of.things.Thing"
    assert codec.binary_from_native(None, {}) == b"\x00"


def test_union_of_records_default_value():
    codec = new_codec("""
    {"type": "record", "name": "Thing", "namespace": "universe.of.things",
     "fields": [{"name": "layout", "type": [
        {"type": "record", "name": "AnotherThing", "namespace": "another.universe.of.things",
         "fields": [{"name": "text", "type": "string", "default": "someText"}]},
        {"type": "record", "name": "AnotherThing2", "namespace": "another.universe.of.things",
         "fields": [{"name": "text", "type": "string", "default": "someOtherText"}]}],
        "default": {"another.universe.of.things.AnotherThing": {"text": "someDefaultText"}}}]}""")
    assert codec.type_name.full_name == "universe.of.things.Thing"
    datum = {"layout": {"another.universe.of.things.AnotherThing2": {"text": "x"}}}
    assert codec.binary_from_native(None, datum) == b"\x02\x02x"