"""The Codec type and the codecs for Avro's primitive types."""

from __future__ import annotations

import json
import math
import re
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable

from .names import Name

MIN_INT = -(2**31)
MAX_INT = 2**31 - 1
MIN_LONG = -(2**63)
MAX_LONG = 2**63 - 1

MAX_BLOCK_COUNT = MAX_INT
MAX_BLOCK_SIZE = MAX_INT

Decoder = Callable[[bytes], "tuple[Any, bytes]"]
Encoder = Callable[[Any], bytes]


class CodecError(ValueError):
    """Raised when a datum cannot be encoded or a buffer cannot be decoded."""


@dataclass(eq=False)
class Codec:
    """Encodes and decodes one Avro type in binary and JSON text form.

    The four callables work on whole values: a decoder takes a buffer and
    returns the datum with the bytes that follow it; an encoder takes a datum
    and returns its encoding.
    """

    type_name: Name
    decode_binary: Decoder
    encode_binary: Encoder
    decode_text: Decoder
    encode_text: Encoder
    schema_original: str = ""
    schema: str = ""

    def native_from_binary(self, buf: bytes) -> tuple[Any, bytes]:
        """Decode one datum from binary ``buf``; return it with the remaining bytes."""
        return self.decode_binary(bytes(buf))

    def binary_from_native(self, buf: bytes | None, datum: Any) -> bytes:
        """Return ``buf`` followed by the binary encoding of ``datum``."""
        prefix = bytes(buf) if buf else b""
        return prefix + self.encode_binary(datum)

    def native_from_textual(self, buf: bytes) -> tuple[Any, bytes]:
        """Decode one datum from JSON text ``buf``; return it with the remaining bytes."""
        return self.decode_text(bytes(buf))

    def textual_from_native(self, buf: bytes | None, datum: Any) -> bytes:
        """Return ``buf`` followed by the JSON text encoding of ``datum``."""
        prefix = bytes(buf) if buf else b""
        return prefix + self.encode_text(datum)


def _type_label(datum: Any) -> str:
    return type(datum).__name__


# ---------------------------------------------------------------------------
# variable-length zig-zag integers
# ---------------------------------------------------------------------------


def _zigzag_varint(value: int) -> bytes:
    encoded = (value << 1) ^ (value >> 63)
    out = bytearray()
    while encoded > 0x7F:
        out.append((encoded & 0x7F) | 0x80)
        encoded >>= 7
    out.append(encoded)
    return bytes(out)


def encode_long(value: int) -> bytes:
    """Return the zig-zag varint encoding of a 64-bit signed integer."""
    if not MIN_LONG <= value <= MAX_LONG:
        raise CodecError(f"cannot encode binary long: value out of range: {value}")
    return _zigzag_varint(value)


def _decode_varint(buf: bytes, max_bytes: int, label: str, low: int, high: int) -> tuple[int, bytes]:
    result = 0
    shift = 0
    for index, byte in enumerate(buf[:max_bytes]):
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            value = (result >> 1) ^ -(result & 1)
            if not low <= value <= high:
                raise CodecError(f"cannot decode binary {label}: value out of range: {value}")
            return value, buf[index + 1 :]
        shift += 7
    if len(buf) >= max_bytes:
        raise CodecError(f"cannot decode binary {label}: varint overflow")
    raise CodecError(f"cannot decode binary {label}: short buffer")


def decode_long(buf: bytes) -> tuple[int, bytes]:
    """Decode a zig-zag varint long from ``buf``; return it with the remaining bytes."""
    return _decode_varint(bytes(buf), 10, "long", MIN_LONG, MAX_LONG)


def read_long(stream: BinaryIO) -> int:
    """Read one zig-zag varint long from a binary stream.

    Raises EOFError when the stream is exhausted before the first byte.
    """
    result = 0
    shift = 0
    for count in range(10):
        chunk = stream.read(1)
        if not chunk:
            if count == 0:
                raise EOFError("EOF")
            raise CodecError("cannot read long: unexpected EOF")
        byte = chunk[0]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return (result >> 1) ^ -(result & 1)
        shift += 7
    raise CodecError("cannot read long: varint overflow")


# ---------------------------------------------------------------------------
# JSON text scanning
# ---------------------------------------------------------------------------

_NUMBER_PATTERN = re.compile(rb"-?(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")
_STRING_PATTERN = re.compile(rb'"(?:[^"\\]|\\.)*"', re.DOTALL)
_SPECIAL_FLOATS = (
    (b"NaN", math.nan),
    (b"-Infinity", -math.inf),
    (b"Infinity", math.inf),
)


def _scan_string(buf: bytes, label: str) -> tuple[str, bytes]:
    if not buf:
        raise CodecError(f"cannot decode textual {label}: short buffer")
    if buf[:1] != b'"':
        raise CodecError(f"cannot decode textual {label}: expected initial '\"'; found: {chr(buf[0])!r}")
    match = _STRING_PATTERN.match(buf)
    if match is None:
        raise CodecError(f"cannot decode textual {label}: short buffer")
    try:
        text = json.loads(match.group().decode("utf-8"))
    except ValueError as err:
        raise CodecError(f"cannot decode textual {label}: {err}") from err
    return text, buf[match.end() :]


def _scan_number(buf: bytes, label: str) -> tuple[bytes, bytes]:
    if not buf:
        raise CodecError(f"cannot decode textual {label}: short buffer")
    match = _NUMBER_PATTERN.match(buf)
    if match is None:
        raise CodecError(f"cannot decode textual {label}: expected number")
    return match.group(), buf[match.end() :]


def _special_float_text(value: float) -> str | None:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return None


# ---------------------------------------------------------------------------
# null
# ---------------------------------------------------------------------------


def _null_codec() -> Codec:
    def decode_binary(buf: bytes) -> tuple[None, bytes]:
        return None, buf

    def encode_binary(datum: Any) -> bytes:
        if datum is not None:
            raise CodecError(f"cannot encode binary null: expected: None; received: {_type_label(datum)}")
        return b""

    def decode_text(buf: bytes) -> tuple[None, bytes]:
        if len(buf) < 4:
            raise CodecError("cannot decode textual null: short buffer")
        if buf[:4] == b"null":
            return None, buf[4:]
        raise CodecError("cannot decode textual null: expected: null")

    def encode_text(datum: Any) -> bytes:
        if datum is not None:
            raise CodecError(f"cannot encode textual null: expected: None; received: {_type_label(datum)}")
        return b"null"

    return Codec(Name("null"), decode_binary, encode_binary, decode_text, encode_text, "null")


# ---------------------------------------------------------------------------
# boolean
# ---------------------------------------------------------------------------


def _boolean_codec() -> Codec:
    def decode_binary(buf: bytes) -> tuple[bool, bytes]:
        if not buf:
            raise CodecError("cannot decode binary boolean: short buffer")
        if buf[0] > 1:
            raise CodecError(f"cannot decode binary boolean: expected: 0 or 1; received: {buf[0]}")
        return buf[0] == 1, buf[1:]

    def check(datum: Any, form: str) -> bool:
        if not isinstance(datum, bool):
            raise CodecError(f"cannot encode {form} boolean: expected: bool; received: {_type_label(datum)}")
        return datum

    def encode_binary(datum: Any) -> bytes:
        flag = check(datum, "binary")
        return bytes([int(flag)])

    def decode_text(buf: bytes) -> tuple[bool, bytes]:
        if buf.startswith(b"true"):
            return True, buf[4:]
        if buf.startswith(b"false"):
            return False, buf[5:]
        if len(buf) < 4:
            raise CodecError("cannot decode textual boolean: short buffer")
        raise CodecError("cannot decode textual boolean: expected: true or false")

    def encode_text(datum: Any) -> bytes:
        flag = check(datum, "textual")
        return json.dumps(flag).encode("ascii")

    return Codec(Name("boolean"), decode_binary, encode_binary, decode_text, encode_text, "boolean")


# ---------------------------------------------------------------------------
# int and long
# ---------------------------------------------------------------------------


def _coerce_integer(datum: Any, form: str, label: str, low: int, high: int) -> int:
    if isinstance(datum, bool) or not isinstance(datum, (int, float)):
        raise CodecError(f"cannot encode {form} {label}: expected: int; received: {_type_label(datum)}")
    if isinstance(datum, float):
        if not datum.is_integer():
            raise CodecError(f"cannot encode {form} {label}: expected integral value; received: {datum!r}")
        datum = int(datum)
    if not low <= datum <= high:
        raise CodecError(f"cannot encode {form} {label}: value out of range: {datum}")
    return datum


def _integer_codec(label: str, low: int, high: int, max_bytes: int) -> Codec:
    def decode_binary(buf: bytes) -> tuple[int, bytes]:
        return _decode_varint(buf, max_bytes, label, low, high)

    def encode_binary(datum: Any) -> bytes:
        return _zigzag_varint(_coerce_integer(datum, "binary", label, low, high))

    def decode_text(buf: bytes) -> tuple[int, bytes]:
        literal, rest = _scan_number(buf, label)
        if literal.lstrip(b"-").isdigit():
            value = int(literal)
        else:
            number = float(literal)
            if not number.is_integer():
                raise CodecError(f"cannot decode textual {label}: expected integral value: {literal.decode()}")
            value = int(number)
        if not low <= value <= high:
            raise CodecError(f"cannot decode textual {label}: value out of range: {value}")
        return value, rest

    def encode_text(datum: Any) -> bytes:
        return str(_coerce_integer(datum, "textual", label, low, high)).encode()

    return Codec(Name(label), decode_binary, encode_binary, decode_text, encode_text, label)


# ---------------------------------------------------------------------------
# float and double
# ---------------------------------------------------------------------------


def _to_float32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except (OverflowError, struct.error) as err:
        raise CodecError(f"cannot represent as float: {value!r}") from err


def _format_float32(value: float) -> str:
    special = _special_float_text(value)
    if special is not None:
        return special
    for precision in range(1, 18):
        text = f"{value:.{precision}g}"
        if _to_float32(float(text)) == value:
            return text
    return repr(value)


def _format_double(value: float) -> str:
    special = _special_float_text(value)
    return special if special is not None else repr(value)


def _floating_codec(label: str, fmt: str) -> Codec:
    single = fmt == "<f"
    size = struct.calcsize(fmt)

    def coerce(datum: Any, form: str) -> float:
        if isinstance(datum, bool) or not isinstance(datum, (int, float)):
            raise CodecError(f"cannot encode {form} {label}: expected: float; received: {_type_label(datum)}")
        value = float(datum)
        return _to_float32(value) if single else value

    def decode_binary(buf: bytes) -> tuple[float, bytes]:
        if len(buf) < size:
            raise CodecError(f"cannot decode binary {label}: short buffer")
        return struct.unpack(fmt, buf[:size])[0], buf[size:]

    def encode_binary(datum: Any) -> bytes:
        return struct.pack(fmt, coerce(datum, "binary"))

    def decode_text(buf: bytes) -> tuple[float, bytes]:
        for literal, special in _SPECIAL_FLOATS:
            if buf.startswith(literal):
                return special, buf[len(literal) :]
        literal, rest = _scan_number(buf, label)
        value = float(literal)
        return (_to_float32(value) if single else value), rest

    def encode_text(datum: Any) -> bytes:
        value = coerce(datum, "textual")
        return (_format_float32(value) if single else _format_double(value)).encode()

    return Codec(Name(label), decode_binary, encode_binary, decode_text, encode_text, label)


# ---------------------------------------------------------------------------
# bytes and string
# ---------------------------------------------------------------------------


def _decode_sized(buf: bytes, label: str) -> tuple[bytes, bytes]:
    try:
        size, rest = decode_long(buf)
    except CodecError as err:
        raise CodecError(f"cannot decode binary {label}: {err}") from err
    if size < 0:
        raise CodecError(f"cannot decode binary {label}: size is negative: {size}")
    if size > MAX_BLOCK_SIZE:
        raise CodecError(f"cannot decode binary {label}: size exceeds maximum block size: {size} > {MAX_BLOCK_SIZE}")
    if len(rest) < size:
        raise CodecError(f"cannot decode binary {label}: short buffer")
    return rest[:size], rest[size:]


def _bytes_codec() -> Codec:
    def coerce(datum: Any, form: str) -> bytes:
        if isinstance(datum, str):
            return datum.encode("utf-8")
        if isinstance(datum, (bytes, bytearray, memoryview)):
            return bytes(datum)
        raise CodecError(f"cannot encode {form} bytes: expected: bytes or str; received: {_type_label(datum)}")

    def decode_binary(buf: bytes) -> tuple[bytes, bytes]:
        return _decode_sized(buf, "bytes")

    def encode_binary(datum: Any) -> bytes:
        data = coerce(datum, "binary")
        return encode_long(len(data)) + data

    def decode_text(buf: bytes) -> tuple[bytes, bytes]:
        text, rest = _scan_string(buf, "bytes")
        try:
            return text.encode("latin-1"), rest
        except UnicodeEncodeError as err:
            raise CodecError(f"cannot decode textual bytes: code point out of byte range: {err}") from err

    def encode_text(datum: Any) -> bytes:
        data = coerce(datum, "textual")
        return json.dumps(data.decode("latin-1"), ensure_ascii=True).encode("ascii")

    return Codec(Name("bytes"), decode_binary, encode_binary, decode_text, encode_text, "bytes")


def _string_codec() -> Codec:
    def coerce(datum: Any, form: str) -> str:
        if isinstance(datum, str):
            return datum
        if isinstance(datum, (bytes, bytearray, memoryview)):
            try:
                return bytes(datum).decode("utf-8")
            except UnicodeDecodeError as err:
                raise CodecError(f"cannot encode {form} string: {err}") from err
        raise CodecError(f"cannot encode {form} string: expected: str; received: {_type_label(datum)}")

    def decode_binary(buf: bytes) -> tuple[str, bytes]:
        data, rest = _decode_sized(buf, "string")
        try:
            return data.decode("utf-8"), rest
        except UnicodeDecodeError as err:
            raise CodecError(f"cannot decode binary string: {err}") from err

    def encode_binary(datum: Any) -> bytes:
        data = coerce(datum, "binary").encode("utf-8")
        return encode_long(len(data)) + data

    def decode_text(buf: bytes) -> tuple[str, bytes]:
        return _scan_string(buf, "string")

    def encode_text(datum: Any) -> bytes:
        return json.dumps(coerce(datum, "textual"), ensure_ascii=False).encode("utf-8")

    return Codec(Name("string"), decode_binary, encode_binary, decode_text, encode_text, "string")


_FACTORIES: dict[str, Callable[[], Codec]] = {
    "null": _null_codec,
    "boolean": _boolean_codec,
    "int": lambda: _integer_codec("int", MIN_INT, MAX_INT, 5),
    "long": lambda: _integer_codec("long", MIN_LONG, MAX_LONG, 10),
    "float": lambda: _floating_codec("float", "<f"),
    "double": lambda: _floating_codec("double", "<d"),
    "bytes": _bytes_codec,
    "string": _string_codec,
}

PRIMITIVE_TYPE_NAMES = frozenset(_FACTORIES)


def primitive_codec(type_name: str) -> Codec:
    """Return a new codec for the named Avro primitive type."""
    try:
        factory = _FACTORIES[type_name]
    except KeyError:
        raise CodecError(f"unknown primitive type name: {type_name!r}") from None
    return factory()