"""The Avro union codec and the helper that wraps a datum for it."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from .maps import map_text_decoder
from .names import Name
from .primitives import Codec, CodecError, decode_long, encode_long, primitive_codec

BuildFn = Callable[[dict, str, Any], Codec]

_STRING = primitive_codec("string")


def union(name: str, datum: Any) -> Any:
    """Wrap ``datum`` for encoding as the union member named ``name``.

    A ``None`` datum for the ``null`` member stays ``None``; anything else
    becomes a single-entry dict keyed by the member's type name.
    """
    if datum is None and name == "null":
        return None
    return {name: datum}


def make_union_codec(
    symtab: dict,
    namespace: str,
    schema_array: Sequence[Any],
    build: BuildFn,
) -> Codec:
    """Build a codec for an Avro union; ``build`` makes the codec of each member."""
    if not schema_array:
        raise CodecError("Union ought to have one or more members")

    codecs: list[Codec] = []
    index_from_name: dict[str, int] = {}
    for position, member_schema in enumerate(schema_array, start=1):
        try:
            member = build(symtab, namespace, member_schema)
        except ValueError as err:
            raise CodecError(f"Union item {position} ought to be valid Avro type: {err}") from err
        full_name = member.type_name.full_name
        if full_name in index_from_name:
            raise CodecError(f"Union item {position} ought to be unique type: {full_name}")
        index_from_name[full_name] = len(codecs)
        codecs.append(member)

    allowed = "[" + " ".join(index_from_name) + "]"
    codec_from_name = {name: codecs[index] for name, index in index_from_name.items()}

    def unsupported(form: str, datum: Any) -> CodecError:
        return CodecError(
            f"cannot encode {form} union: no member schema types support datum: "
            f"allowed types: {allowed}; received: {type(datum).__name__}"
        )

    def select(datum: Any, form: str) -> tuple[int, Any]:
        if datum is None:
            if "null" not in index_from_name:
                raise unsupported(form, datum)
            return index_from_name["null"], None
        if not isinstance(datum, Mapping) or len(datum) != 1:
            raise CodecError(
                f"cannot encode {form} union: non-None union values ought to be given as a "
                "dict with a single key equal to the type name and value equal to the datum: "
                f"{allowed}; received: {type(datum).__name__}"
            )
        ((key, value),) = datum.items()
        if key not in index_from_name:
            raise unsupported(form, datum)
        return index_from_name[key], value

    def decode_binary(buf: bytes) -> tuple[Any, bytes]:
        index, buf = decode_long(buf)
        if not 0 <= index < len(codecs):
            raise CodecError(
                f"cannot decode binary union: index ought to be between 0 and {len(codecs) - 1}; "
                f"read index: {index}"
            )
        try:
            decoded, buf = codecs[index].decode_binary(buf)
        except ValueError as err:
            raise CodecError(f"cannot decode binary union item {index + 1}: {err}") from err
        if decoded is None:
            return None, buf
        return union(codecs[index].type_name.full_name, decoded), buf

    def encode_binary(datum: Any) -> bytes:
        index, value = select(datum, "binary")
        prefix = encode_long(index)
        if datum is None:
            return prefix
        return prefix + codecs[index].encode_binary(value)

    def decode_text(buf: bytes) -> tuple[Any, bytes]:
        if buf[:4] == b"null" and "null" in index_from_name:
            return None, buf[4:]
        try:
            return map_text_decoder(buf, None, codec_from_name)
        except ValueError as err:
            raise CodecError(f"cannot decode textual union: {err}") from err

    def encode_text(datum: Any) -> bytes:
        index, value = select(datum, "textual")
        if datum is None:
            return b"null"
        key = codecs[index].type_name.full_name
        try:
            encoded = codecs[index].encode_text(value)
        except ValueError as err:
            raise CodecError(f"cannot encode textual union: {err}") from err
        return b"{" + _STRING.encode_text(key) + b":" + encoded + b"}"

    return Codec(
        Name("union"),
        decode_binary,
        encode_binary,
        decode_text,
        encode_text,
        schema_original=codecs[0].type_name.full_name,
    )