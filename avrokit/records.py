"""The Avro record codec."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from .maps import map_text_decoder, map_text_encoder
from .names import name_from_schema_map
from .primitives import Codec, CodecError
from .unions import union

BuildFn = Callable[[dict, str, Any], Codec]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_default(field_codec: Codec, default: Any) -> Any:
    """Bring a JSON default value into the native form of the field's type."""
    short = field_codec.type_name.short()
    if short == "boolean":
        if not isinstance(default, bool):
            raise CodecError("expected boolean default")
        return default
    if short == "bytes":
        if not isinstance(default, str):
            raise CodecError("expected string default")
        return default.encode("utf-8")
    if short == "string":
        if not isinstance(default, str):
            raise CodecError("expected string default")
        return default
    if short in ("double", "float"):
        if not _is_number(default):
            raise CodecError("expected number default")
        return float(default)
    if short in ("int", "long"):
        if not _is_number(default):
            raise CodecError("expected number default")
        return int(default)
    if short == "union":
        # The default of a union field is given for its first member.
        if default == "null":
            default = None
        return union(field_codec.schema_original, default)
    return default


def make_record_codec(
    symtab: dict,
    namespace: str,
    schema_map: Mapping[str, Any],
    build: BuildFn,
) -> Codec:
    """Build a codec for an Avro record; ``build`` makes the codec of each field.

    The record is registered in ``symtab`` before its fields are built, so a
    field may refer to the record itself.
    """
    try:
        record_name = name_from_schema_map(namespace, schema_map)
    except ValueError as err:
        raise CodecError(f"Record ought to have valid name: {err}") from err
    if record_name.full_name in symtab:
        raise CodecError(
            f"Record ought to have valid name: type name already defined: {record_name.full_name}"
        )
    label = repr(record_name.full_name)

    # Filled in once the fields are built; the encoders below read them then.
    codec_from_field: dict[str, Codec] = {}
    defaults: dict[str, Any] = {}

    def field_value(values: Mapping[str, Any], field_name: str, form: str) -> Any:
        if field_name in values:
            return values[field_name]
        if field_name in defaults:
            return defaults[field_name]
        raise CodecError(
            f"cannot encode {form} record {label} field {field_name!r}: "
            "schema does not specify default value and no value provided"
        )

    def require_mapping(datum: Any, form: str) -> Mapping[str, Any]:
        if not isinstance(datum, Mapping):
            raise CodecError(
                f"cannot encode {form} record {label}: expected mapping; received: {type(datum).__name__}"
            )
        return datum

    def encode_binary(datum: Any) -> bytes:
        values = require_mapping(datum, "binary")
        parts = []
        for field_name, field_codec in codec_from_field.items():
            value = field_value(values, field_name, "binary")
            try:
                parts.append(field_codec.encode_binary(value))
            except ValueError as err:
                raise CodecError(
                    f"cannot encode binary record {label} field {field_name!r}: "
                    f"value does not match its schema: {err}"
                ) from err
        return b"".join(parts)

    def decode_binary(buf: bytes) -> tuple[dict[str, Any], bytes]:
        record: dict[str, Any] = {}
        for field_name, field_codec in codec_from_field.items():
            try:
                record[field_name], buf = field_codec.decode_binary(buf)
            except ValueError as err:
                raise CodecError(f"cannot decode binary record {label} field {field_name!r}: {err}") from err
        return record, buf

    def decode_text(buf: bytes) -> tuple[dict[str, Any], bytes]:
        try:
            values, buf = map_text_decoder(buf, None, codec_from_field)
        except ValueError as err:
            raise CodecError(f"cannot decode textual record {label}: {err}") from err
        for field_name, default in defaults.items():
            values.setdefault(field_name, default)
        if len(values) != len(codec_from_field):
            raise CodecError(
                f"cannot decode textual record {label}: "
                f"only found {len(values)} of {len(codec_from_field)} fields"
            )
        return {field_name: values[field_name] for field_name in codec_from_field}, buf

    def encode_text(datum: Any) -> bytes:
        values = require_mapping(datum, "textual")
        complete = {field_name: field_value(values, field_name, "textual") for field_name in codec_from_field}
        return map_text_encoder(complete, None, codec_from_field)

    codec = Codec(record_name, decode_binary, encode_binary, decode_text, encode_text)
    symtab[record_name.full_name] = codec

    if "fields" not in schema_map:
        raise CodecError(f"Record {label} ought to have fields key")
    field_schemas = schema_map["fields"]
    if not isinstance(field_schemas, list):
        raise CodecError(f"Record {label} fields ought to be non-nil array: {field_schemas!r}")

    for position, field_schema in enumerate(field_schemas, start=1):
        if not isinstance(field_schema, Mapping):
            raise CodecError(
                f"Record {label} field {position} ought to be valid Avro named type; received: {field_schema!r}"
            )
        try:
            field_codec = build(symtab, record_name.namespace, field_schema)
        except ValueError as err:
            raise CodecError(f"Record {label} field {position} ought to be valid Avro named type: {err}") from err
        try:
            field_name = name_from_schema_map(record_name.namespace, field_schema).short()
        except ValueError as err:
            raise CodecError(f"Record {label} field {position} ought to have valid name: {err}") from err
        if field_name in codec_from_field:
            raise CodecError(f"Record {label} field {position} ought to have unique name: {field_name!r}")

        if "default" in field_schema:
            try:
                default = _coerce_default(field_codec, field_schema["default"])
                field_codec.encode_binary(default)
            except ValueError as err:
                raise CodecError(
                    f"Record {label} field {field_name!r}: default value ought to encode using field schema: {err}"
                ) from err
            defaults[field_name] = default

        codec_from_field[field_name] = field_codec

    return codec