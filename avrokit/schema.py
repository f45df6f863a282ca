"""Building codecs from Avro schemas, including logical types."""

from __future__ import annotations

import json
import numbers
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from fractions import Fraction
from itertools import islice
from typing import Any, Callable

from .maps import make_map_codec
from .names import Name, name_from_schema_map, new_name
from .primitives import (
    MAX_BLOCK_COUNT,
    MIN_LONG,
    PRIMITIVE_TYPE_NAMES,
    Codec,
    CodecError,
    decode_long,
    encode_long,
    primitive_codec,
)
from .records import make_record_codec
from .textscan import advance_and_consume, advance_to_non_whitespace
from .unions import make_union_codec

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_EPOCH_DATE = date(1970, 1, 1)
_MICROS_PER_DAY = 86_400_000_000
_ONE_MICRO = timedelta(microseconds=1)


def new_codec(schema: str | bytes) -> Codec:
    """Parse an Avro schema given as JSON text and return its codec."""
    text = schema.decode("utf-8") if isinstance(schema, (bytes, bytearray)) else schema
    try:
        parsed = json.loads(text)
    except ValueError as err:
        raise CodecError(f"cannot unmarshal schema JSON: {err}") from err
    symtab: dict[str, Codec] = {name: primitive_codec(name) for name in PRIMITIVE_TYPE_NAMES}
    codec = build_codec(symtab, "", parsed)
    codec.schema = text
    return codec


def build_codec(symtab: dict, namespace: str, schema: Any) -> Codec:
    """Build the codec for a parsed schema, registering named types in ``symtab``."""
    if isinstance(schema, str):
        return _codec_for_name(symtab, namespace, schema)
    if isinstance(schema, list):
        return make_union_codec(symtab, namespace, schema, build_codec)
    if isinstance(schema, Mapping):
        return _codec_for_map(symtab, namespace, schema)
    raise CodecError(f"unknown schema type: {type(schema).__name__}")


def _codec_for_name(symtab: dict, namespace: str, type_name: str) -> Codec:
    if type_name in PRIMITIVE_TYPE_NAMES:
        codec = symtab.get(type_name)
        return codec if codec is not None else primitive_codec(type_name)
    candidates = []
    try:
        candidates.append(new_name(type_name, "", namespace).full_name)
    except ValueError:
        pass
    candidates.append(type_name)
    for candidate in candidates:
        if candidate in symtab:
            return symtab[candidate]
    raise CodecError(f"unknown type name: {type_name!r}")


def _codec_for_map(symtab: dict, namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    if "type" not in schema_map:
        raise CodecError(f"missing type: {dict(schema_map)!r}")
    type_value = schema_map["type"]
    if isinstance(type_value, (list, Mapping)):
        return build_codec(symtab, namespace, type_value)
    if not isinstance(type_value, str):
        raise CodecError(f"type ought to be string, array or object; received: {type(type_value).__name__}")

    logical = schema_map.get("logicalType")
    if type_value in ("record", "error"):
        return make_record_codec(symtab, namespace, schema_map, build_codec)
    if type_value == "enum":
        return _make_enum_codec(symtab, namespace, schema_map)
    if type_value == "fixed":
        if logical == "decimal":
            return _make_decimal_fixed_codec(symtab, namespace, schema_map)
        return _make_fixed_codec(symtab, namespace, schema_map)
    if type_value == "map":
        return make_map_codec(symtab, namespace, schema_map, build_codec)
    if type_value == "array":
        return _make_array_codec(symtab, namespace, schema_map)
    if type_value == "bytes" and logical == "decimal":
        return _make_decimal_bytes_codec(namespace, schema_map)
    if isinstance(logical, str) and (type_value, logical) in _SIMPLE_LOGICAL:
        to_native, from_native = _SIMPLE_LOGICAL[(type_value, logical)]
        return _convert(primitive_codec(type_value), Name(f"{type_value}.{logical}"), to_native, from_native)
    # Unknown logical types fall back to the underlying type.
    return _codec_for_name(symtab, namespace, type_value)


def _convert(
    codec: Codec,
    type_name: Name,
    to_native: Callable[[Any], Any],
    from_native: Callable[[Any], Any],
) -> Codec:
    """Wrap the codec's callables with conversions to and from native values."""
    decode_binary, encode_binary = codec.decode_binary, codec.encode_binary
    decode_text, encode_text = codec.decode_text, codec.encode_text

    def new_decode_binary(buf: bytes) -> tuple[Any, bytes]:
        value, rest = decode_binary(buf)
        return to_native(value), rest

    def new_decode_text(buf: bytes) -> tuple[Any, bytes]:
        value, rest = decode_text(buf)
        return to_native(value), rest

    codec.type_name = type_name
    codec.decode_binary = new_decode_binary
    codec.encode_binary = lambda datum: encode_binary(from_native(datum))
    codec.decode_text = new_decode_text
    codec.encode_text = lambda datum: encode_text(from_native(datum))
    return codec


# ---------------------------------------------------------------------------
# date and time logical types
# ---------------------------------------------------------------------------


def _trunc_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return quotient if value >= 0 else -quotient


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _micros_since_epoch(moment: datetime) -> int:
    return (_as_utc(moment) - _EPOCH) // _ONE_MICRO


def _type_label(datum: Any) -> str:
    return type(datum).__name__


def _date_to_native(days: int) -> date:
    try:
        return _EPOCH_DATE + timedelta(days=days)
    except OverflowError as err:
        raise CodecError(f"cannot transform to native date: {err}") from err


def _date_from_native(datum: Any) -> int:
    if isinstance(datum, datetime):
        return _trunc_div(_micros_since_epoch(datum), _MICROS_PER_DAY)
    if isinstance(datum, date):
        return (datum - _EPOCH_DATE).days
    raise CodecError(f"cannot transform to binary date, expected datetime.date, received {_type_label(datum)}")


def _duration_from_native(label: str, divisor: int) -> Callable[[Any], int]:
    def from_native(datum: Any) -> int:
        if not isinstance(datum, timedelta):
            raise CodecError(
                f"cannot transform to binary {label}, expected datetime.timedelta, received {_type_label(datum)}"
            )
        return _trunc_div(datum // _ONE_MICRO, divisor)

    return from_native


def _timestamp_to_native(micros_per_unit: int) -> Callable[[int], datetime]:
    def to_native(value: int) -> datetime:
        try:
            return _EPOCH + timedelta(microseconds=value * micros_per_unit)
        except OverflowError as err:
            raise CodecError(f"cannot transform to native timestamp: {err}") from err

    return to_native


def _timestamp_from_native(label: str, divisor: int) -> Callable[[Any], int]:
    def from_native(datum: Any) -> int:
        if not isinstance(datum, datetime):
            raise CodecError(
                f"cannot transform binary {label}, expected datetime.datetime, received {_type_label(datum)}"
            )
        return _trunc_div(_micros_since_epoch(datum), divisor)

    return from_native


_SIMPLE_LOGICAL: dict[tuple[str, str], tuple[Callable[[Any], Any], Callable[[Any], Any]]] = {
    ("int", "date"): (_date_to_native, _date_from_native),
    ("int", "time-millis"): (
        lambda value: timedelta(milliseconds=value),
        _duration_from_native("time-millis", 1000),
    ),
    ("long", "time-micros"): (
        lambda value: timedelta(microseconds=value),
        _duration_from_native("time-micros", 1),
    ),
    ("long", "timestamp-millis"): (
        _timestamp_to_native(1000),
        _timestamp_from_native("timestamp-millis", 1000),
    ),
    ("long", "timestamp-micros"): (
        _timestamp_to_native(1),
        _timestamp_from_native("timestamp-micros", 1),
    ),
}


# ---------------------------------------------------------------------------
# decimal logical type
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def precision_and_scale(schema_map: Mapping[str, Any]) -> tuple[int, int]:
    """Return the ``(precision, scale)`` of a decimal schema; scale defaults to 0."""
    if "precision" not in schema_map:
        raise CodecError("cannot create decimal logical type without precision")
    raw_precision = schema_map["precision"]
    if not _is_number(raw_precision):
        raise CodecError(
            "cannot create decimal logical type with wrong precision type; "
            f"expected: number; received: {_type_label(raw_precision)}"
        )
    precision = int(raw_precision)
    if precision <= 1:
        raise CodecError(f"cannot create decimal logical type when precision is less than one: {precision}")
    scale = 0
    if "scale" in schema_map:
        raw_scale = schema_map["scale"]
        if not _is_number(raw_scale):
            raise CodecError(
                "cannot create decimal logical type with wrong scale type; "
                f"expected: number; received: {_type_label(raw_scale)}"
            )
        scale = int(raw_scale)
        if scale < 0:
            raise CodecError(f"cannot create decimal logical type when scale is less than zero: {scale}")
        if scale > precision:
            raise CodecError(
                f"cannot create decimal logical type when scale is larger than precision: {scale} > {precision}"
            )
    return precision, scale


def from_signed_bytes(data: bytes) -> int:
    """Return the integer held in big-endian two's complement ``data``; empty is 0."""
    return int.from_bytes(bytes(data), "big", signed=True)


def to_signed_bytes(n: int) -> bytes:
    """Return the shortest big-endian two's complement form of ``n``."""
    if n == 0:
        return b"\x00"
    if n > 0:
        data = n.to_bytes((n.bit_length() + 7) // 8, "big")
        return b"\x00" + data if data[0] & 0x80 else data
    length = (n.bit_length() // 8 + 1) * 8
    value = n + (1 << length)
    data = value.to_bytes((value.bit_length() + 7) // 8, "big")
    if len(data) >= 2 and data[0] == 0xFF and data[1] & 0x80:
        data = data[1:]
    return data


def to_signed_fixed_bytes(n: int, size: int) -> bytes:
    """Return the big-endian two's complement form of ``n`` in exactly ``size`` bytes."""
    try:
        return n.to_bytes(size, "big", signed=True)
    except OverflowError as err:
        raise CodecError(f"cannot encode decimal: {n} does not fit in {size} bytes") from err


def _decimal_conversions(scale: int, to_bytes: Callable[[int], bytes]) -> tuple[Callable, Callable]:
    def to_native(raw: Any) -> Any:
        number = from_signed_bytes(raw)
        if number.bit_length() > 64:
            # Values that do not fit are returned in their underlying form.
            return raw
        return Decimal(f"{number}E-{scale}")

    def from_native(datum: Any) -> bytes:
        if isinstance(datum, bool) or not isinstance(datum, (numbers.Rational, float, Decimal)):
            raise CodecError(f"cannot transform to bytes, expected decimal number, received {_type_label(datum)}")
        try:
            fraction = Fraction(datum)
        except (ValueError, OverflowError) as err:
            raise CodecError(f"cannot transform to bytes: {err}") from err
        scaled = fraction.numerator * 10**scale // fraction.denominator
        return to_bytes(scaled)

    return to_native, from_native


def _make_decimal_bytes_codec(namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    _, scale = precision_and_scale(schema_map)
    if "name" in schema_map:
        try:
            type_name = name_from_schema_map(namespace, schema_map)
        except ValueError as err:
            raise CodecError(f"Bytes ought to have valid name: {err}") from err
    else:
        type_name = Name("bytes.decimal")
    to_native, from_native = _decimal_conversions(scale, to_signed_bytes)
    return _convert(primitive_codec("bytes"), type_name, to_native, from_native)


def _make_decimal_fixed_codec(symtab: dict, namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    _, scale = precision_and_scale(schema_map)
    named = dict(schema_map)
    named.setdefault("name", "fixed.decimal")
    codec = _make_fixed_codec(symtab, namespace, named)
    size = _fixed_size(codec.type_name, named)
    to_native, from_native = _decimal_conversions(scale, lambda n: to_signed_fixed_bytes(n, size))
    return _convert(codec, codec.type_name, to_native, from_native)


# ---------------------------------------------------------------------------
# named types: fixed and enum
# ---------------------------------------------------------------------------


def _register(symtab: dict, namespace: str, schema_map: Mapping[str, Any], label: str) -> Name:
    try:
        name = name_from_schema_map(namespace, schema_map)
    except ValueError as err:
        raise CodecError(f"{label} ought to have valid name: {err}") from err
    if name.full_name in symtab:
        raise CodecError(f"type name already defined: {name.full_name}")
    return name


def _fixed_size(type_name: Name, schema_map: Mapping[str, Any]) -> int:
    if "size" not in schema_map:
        raise CodecError(f"Fixed {type_name.full_name!r} ought to have size key")
    size = schema_map["size"]
    if not _is_number(size) or int(size) != size or size < 0:
        raise CodecError(f"Fixed {type_name.full_name!r} size ought to be non-negative number: {size!r}")
    return int(size)


def _make_fixed_codec(symtab: dict, namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    type_name = _register(symtab, namespace, schema_map, "Fixed")
    size = _fixed_size(type_name, schema_map)
    label = repr(type_name.full_name)
    raw = primitive_codec("bytes")

    def check(datum: Any, form: str) -> bytes:
        if not isinstance(datum, (bytes, bytearray, memoryview)):
            raise CodecError(f"cannot encode {form} fixed {label}: expected: bytes; received: {_type_label(datum)}")
        data = bytes(datum)
        if len(data) != size:
            raise CodecError(f"cannot encode {form} fixed {label}: datum size ought to equal schema size: {len(data)} != {size}")
        return data

    def decode_binary(buf: bytes) -> tuple[bytes, bytes]:
        if len(buf) < size:
            raise CodecError(f"cannot decode binary fixed {label}: short buffer")
        return buf[:size], buf[size:]

    def decode_text(buf: bytes) -> tuple[bytes, bytes]:
        data, rest = raw.decode_text(buf)
        if len(data) != size:
            raise CodecError(f"cannot decode textual fixed {label}: datum size ought to equal schema size: {len(data)} != {size}")
        return data, rest

    codec = Codec(
        type_name,
        decode_binary,
        lambda datum: check(datum, "binary"),
        decode_text,
        lambda datum: raw.encode_text(check(datum, "textual")),
    )
    symtab[type_name.full_name] = codec
    return codec


def _make_enum_codec(symtab: dict, namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    type_name = _register(symtab, namespace, schema_map, "Enum")
    label = repr(type_name.full_name)
    symbols = schema_map.get("symbols")
    if not isinstance(symbols, list) or not symbols:
        raise CodecError(f"Enum {label} ought to have non-empty array of symbols")
    for position, symbol in enumerate(symbols, start=1):
        if not isinstance(symbol, str) or "." in symbol:
            raise CodecError(f"Enum {label} symbol {position} ought to be valid name: {symbol!r}")
        try:
            new_name(symbol)
        except ValueError as err:
            raise CodecError(f"Enum {label} symbol {position} ought to be valid name: {err}") from err
    if len(set(symbols)) != len(symbols):
        raise CodecError(f"Enum {label} symbols ought to be unique")
    index_from_symbol = {symbol: index for index, symbol in enumerate(symbols)}
    text = primitive_codec("string")

    def index_of(datum: Any, form: str) -> int:
        if not isinstance(datum, str):
            raise CodecError(f"cannot encode {form} enum {label}: expected: str; received: {_type_label(datum)}")
        if datum not in index_from_symbol:
            raise CodecError(f"cannot encode {form} enum {label}: value ought to be member of symbols: {symbols}; {datum!r}")
        return index_from_symbol[datum]

    def decode_binary(buf: bytes) -> tuple[str, bytes]:
        index, rest = decode_long(buf)
        if not 0 <= index < len(symbols):
            raise CodecError(f"cannot decode binary enum {label}: index ought to be between 0 and {len(symbols) - 1}; read index: {index}")
        return symbols[index], rest

    def decode_text(buf: bytes) -> tuple[str, bytes]:
        symbol, rest = text.decode_text(buf)
        if symbol not in index_from_symbol:
            raise CodecError(f"cannot decode textual enum {label}: value ought to be member of symbols: {symbols}; {symbol!r}")
        return symbol, rest

    def encode_text(datum: Any) -> bytes:
        index_of(datum, "textual")
        return text.encode_text(datum)

    codec = Codec(
        type_name,
        decode_binary,
        lambda datum: encode_long(index_of(datum, "binary")),
        decode_text,
        encode_text,
    )
    symtab[type_name.full_name] = codec
    return codec


# ---------------------------------------------------------------------------
# array
# ---------------------------------------------------------------------------


def _read_block_count(buf: bytes) -> tuple[int, bytes]:
    try:
        count, buf = decode_long(buf)
    except CodecError as err:
        raise CodecError(f"cannot decode binary array block count: {err}") from err
    if count < 0:
        if count == MIN_LONG:
            raise CodecError(f"cannot decode binary array with block count: {count}")
        count = -count
        try:
            _, buf = decode_long(buf)
        except CodecError as err:
            raise CodecError(f"cannot decode binary array block size: {err}") from err
    if count > MAX_BLOCK_COUNT:
        raise CodecError(
            f"cannot decode binary array when block count exceeds maximum block count: {count} > {MAX_BLOCK_COUNT}"
        )
    return count, buf


def _convert_array(datum: Any, form: str) -> list[Any]:
    if isinstance(datum, (str, bytes, bytearray, Mapping)) or not isinstance(datum, Iterable):
        raise CodecError(f"cannot encode {form} array: expected: sequence; received: {_type_label(datum)}")
    return list(datum)


def _make_array_codec(symtab: dict, namespace: str, schema_map: Mapping[str, Any]) -> Codec:
    if "items" not in schema_map:
        raise CodecError("Array ought to have items key")
    try:
        item_codec = build_codec(symtab, namespace, schema_map["items"])
    except ValueError as err:
        raise CodecError(f"Array items ought to be valid Avro type: {err}") from err

    def decode_binary(buf: bytes) -> tuple[list[Any], bytes]:
        items: list[Any] = []
        count, buf = _read_block_count(buf)
        while count:
            for _ in range(count):
                try:
                    item, buf = item_codec.decode_binary(buf)
                except ValueError as err:
                    raise CodecError(f"cannot decode binary array item {len(items) + 1}: {err}") from err
                items.append(item)
            count, buf = _read_block_count(buf)
        return items, buf

    def encode_binary(datum: Any) -> bytes:
        items = iter(_convert_array(datum, "binary"))
        parts = []
        position = 0
        while block := list(islice(items, MAX_BLOCK_COUNT)):
            parts.append(encode_long(len(block)))
            for item in block:
                position += 1
                try:
                    parts.append(item_codec.encode_binary(item))
                except ValueError as err:
                    raise CodecError(f"cannot encode binary array item {position}: {item!r}: {err}") from err
        parts.append(encode_long(0))
        return b"".join(parts)

    def decode_text(buf: bytes) -> tuple[list[Any], bytes]:
        items: list[Any] = []
        buf = advance_and_consume(buf, "[")
        buf = advance_to_non_whitespace(buf)
        if buf[0] == ord("]"):
            return items, buf[1:]
        while True:
            buf = advance_to_non_whitespace(buf)
            try:
                item, buf = item_codec.decode_text(buf)
            except ValueError as err:
                raise CodecError(f"cannot decode textual array item {len(items) + 1}: {err}") from err
            items.append(item)
            buf = advance_to_non_whitespace(buf)
            if buf[0] == ord("]"):
                return items, buf[1:]
            if buf[0] != ord(","):
                raise CodecError(f"cannot decode textual array: expected ',' or ']'; received: {chr(buf[0])!r}")
            buf = buf[1:]

    def encode_text(datum: Any) -> bytes:
        encoded = []
        for position, item in enumerate(_convert_array(datum, "textual"), start=1):
            try:
                encoded.append(item_codec.encode_text(item))
            except ValueError as err:
                raise CodecError(f"cannot encode textual array item {position}: {item!r}: {err}") from err
        return b"[" + b",".join(encoded) + b"]"

    return Codec(Name("array"), decode_binary, encode_binary, decode_text, encode_text)