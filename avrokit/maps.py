"""The Avro map codec and the generic JSON object reader and writer."""

from __future__ import annotations

from itertools import islice
from typing import Any, Callable, Mapping

from .names import Name
from .primitives import (
    MAX_BLOCK_COUNT,
    MIN_LONG,
    Codec,
    CodecError,
    decode_long,
    encode_long,
    primitive_codec,
)
from .textscan import ShortBufferError, advance_and_consume, advance_to_non_whitespace

BuildFn = Callable[[dict, str, Any], Codec]

_STRING = primitive_codec("string")


def convert_map(datum: Any) -> dict[str, Any]:
    """Return ``datum`` as a dict with string keys, or raise CodecError."""
    if not isinstance(datum, Mapping):
        raise CodecError(f"cannot create map: expected mapping with str keys; received: {type(datum).__name__}")
    if not all(isinstance(key, str) for key in datum):
        raise CodecError(f"cannot create map: expected mapping with str keys; received: {type(datum).__name__}")
    return dict(datum)


def map_text_decoder(
    buf: bytes,
    default_codec: Codec | None,
    codec_from_key: Mapping[str, Codec] | None,
) -> tuple[dict[str, Any], bytes]:
    """Decode a JSON object from ``buf``.

    Each value is decoded with the codec for its key in ``codec_from_key``,
    falling back to ``default_codec``; a key with neither is an error.
    """
    codec_from_key = codec_from_key or {}
    values: dict[str, Any] = {}

    buf = advance_and_consume(buf, "{")
    buf = advance_to_non_whitespace(buf)
    if buf[0] == ord("}"):
        return values, buf[1:]

    while True:
        try:
            key, buf = _STRING.decode_text(buf)
        except ValueError as err:
            raise CodecError(f"cannot decode textual map: expected key: {err}") from err
        if key in values:
            raise CodecError(f"cannot decode textual map: duplicate key: {key!r}")
        field_codec = codec_from_key.get(key, default_codec)
        if field_codec is None:
            raise CodecError(f"cannot decode textual map: cannot determine codec: {key!r}")
        buf = advance_and_consume(buf, ":")
        buf = advance_to_non_whitespace(buf)
        values[key], buf = field_codec.decode_text(buf)
        buf = advance_to_non_whitespace(buf)
        separator = buf[0]
        if separator == ord("}"):
            return values, buf[1:]
        if separator != ord(","):
            raise CodecError(f"cannot decode textual map: expected ',' or '}}'; received: {chr(separator)!r}")
        try:
            buf = advance_to_non_whitespace(buf[1:])
        except ShortBufferError:
            raise


def map_text_encoder(
    datum: Any,
    default_codec: Codec | None,
    codec_from_key: Mapping[str, Codec] | None,
) -> bytes:
    """Encode a mapping as a JSON object, choosing each value's codec by key."""
    try:
        values = convert_map(datum)
    except CodecError as err:
        raise CodecError(f"cannot encode textual map: {err}") from err
    codec_from_key = codec_from_key or {}

    members = []
    for key, value in values.items():
        field_codec = codec_from_key.get(key, default_codec)
        if field_codec is None:
            raise CodecError(f"cannot encode textual map: cannot determine codec: {key!r}")
        try:
            encoded = field_codec.encode_text(value)
        except ValueError as err:
            raise CodecError(
                f"cannot encode textual map: value for {key!r} does not match its schema: {err}"
            ) from err
        members.append(_STRING.encode_text(key) + b":" + encoded)
    return b"{" + b",".join(members) + b"}"


def _read_block_count(buf: bytes) -> tuple[int, bytes]:
    try:
        count, buf = decode_long(buf)
    except CodecError as err:
        raise CodecError(f"cannot decode binary map block count: {err}") from err
    if count < 0:
        # A negative count is followed by the block's size in bytes, which is not needed.
        if count == MIN_LONG:
            raise CodecError(f"cannot decode binary map with block count: {count}")
        count = -count
        try:
            _, buf = decode_long(buf)
        except CodecError as err:
            raise CodecError(f"cannot decode binary map block size: {err}") from err
    if count > MAX_BLOCK_COUNT:
        raise CodecError(
            f"cannot decode binary map when block count exceeds maximum block count: {count} > {MAX_BLOCK_COUNT}"
        )
    return count, buf


def make_map_codec(symtab: dict, namespace: str, schema_map: Mapping[str, Any], build: BuildFn) -> Codec:
    """Build a codec for an Avro map schema; ``build`` makes the codec for its values."""
    if "values" not in schema_map:
        raise CodecError("Map ought to have values key")
    try:
        value_codec = build(symtab, namespace, schema_map["values"])
    except ValueError as err:
        raise CodecError(f"Map values ought to be valid Avro type: {err}") from err

    def decode_binary(buf: bytes) -> tuple[dict[str, Any], bytes]:
        values: dict[str, Any] = {}
        count, buf = _read_block_count(buf)
        while count:
            for _ in range(count):
                try:
                    key, buf = _STRING.decode_binary(buf)
                except ValueError as err:
                    raise CodecError(f"cannot decode binary map key: {err}") from err
                if key in values:
                    raise CodecError(f"cannot decode binary map: duplicate key: {key!r}")
                try:
                    values[key], buf = value_codec.decode_binary(buf)
                except ValueError as err:
                    raise CodecError(f"cannot decode binary map value for key {key!r}: {err}") from err
            count, buf = _read_block_count(buf)
        return values, buf

    def encode_binary(datum: Any) -> bytes:
        try:
            values = convert_map(datum)
        except CodecError as err:
            raise CodecError(f"cannot encode binary map: {err}") from err
        parts = []
        items = iter(values.items())
        while block := list(islice(items, MAX_BLOCK_COUNT)):
            parts.append(encode_long(len(block)))
            for key, value in block:
                parts.append(_STRING.encode_binary(key))
                try:
                    parts.append(value_codec.encode_binary(value))
                except ValueError as err:
                    raise CodecError(f"cannot encode binary map value for key {key!r}: {value!r}: {err}") from err
        parts.append(encode_long(0))
        return b"".join(parts)

    def decode_text(buf: bytes) -> tuple[dict[str, Any], bytes]:
        return map_text_decoder(buf, value_codec, None)

    def encode_text(datum: Any) -> bytes:
        return map_text_encoder(datum, value_codec, None)

    return Codec(Name("map"), decode_binary, encode_binary, decode_text, encode_text)