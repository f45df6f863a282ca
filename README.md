# avrokit

A pure-Python toolkit for Apache Avro data. It has no runtime dependencies.

- Compile an Avro schema, given as JSON text, into a `Codec`.
- Encode and decode values in Avro binary form and Avro JSON (textual) form.
- Primitive types, records, enums, arrays, maps, unions and fixed.
- Logical types: `date`, `time-millis`, `time-micros`, `timestamp-millis`,
  `timestamp-micros`, and `decimal` on `bytes` and on `fixed`. Unknown
  logical types fall back to their underlying type.
- Read and write Avro Object Container Files (OCF) with `null`, `deflate` or
  `snappy` block compression (snappy blocks carry the CRC32 trailer), including
  application metadata.
- Compute the CRC-64-AVRO (Rabin) fingerprint of a byte string and split the
  header off Single-Object Encoded data.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Codecs

`avrokit.schema.new_codec` parses a schema and returns a `Codec`:

```python
from avrokit.schema import new_codec
from avrokit.unions import union

codec = new_codec('{"type": "map", "values": "long"}')

encoded = codec.binary_from_native(b"", {"a": 1})
value, rest = codec.native_from_binary(encoded)     # ({'a': 1}, b'')

text = codec.textual_from_native(b"", {"a": 1})     # b'{"a":1}'
value, rest = codec.native_from_textual(text)
```

`binary_from_native(buf, datum)` and `textual_from_native(buf, datum)` return
`buf` (which may be `None` or empty) followed by the encoding of `datum`.
`native_from_binary(buf)` and `native_from_textual(buf)` return the decoded
value together with the bytes that follow it. The schema text a codec was
built from is kept in `codec.schema`.

Native values:

| Avro type | Python value |
|---|---|
| `null` | `None` |
| `boolean` | `bool` |
| `int`, `long` | `int` |
| `float`, `double` | `float` |
| `bytes`, `fixed` | `bytes` |
| `string`, enum symbol | `str` |
| `array` | `list` (any non-string iterable is accepted for encoding) |
| `map`, `record` | `dict` with `str` keys |
| `date` | `datetime.date` |
| `time-millis`, `time-micros` | `datetime.timedelta` |
| `timestamp-millis`, `timestamp-micros` | `datetime.datetime` in UTC (naive values are taken as UTC when encoding) |
| `decimal` | `decimal.Decimal` (encoding also accepts `int`, `float` and `fractions.Fraction`) |

Union values other than `null` are given as a one-key dict naming the member
type, and are decoded the same way. `union` builds one:

```python
codec = new_codec('["null", "string"]')
codec.binary_from_native(b"", union("string", "hello"))
codec.binary_from_native(b"", None)
```

Logical members of a union are named by type and logical type, for example
`"long.timestamp-millis"`. Record fields missing from a datum take their
schema default when one is given.

Errors are raised as subclasses of `ValueError`: `CodecError`
(`avrokit.primitives`) for schemas and data that cannot be encoded or decoded,
`InvalidNameError` (`avrokit.names`) for bad Avro names, and `ShortBufferError`
(`avrokit.textscan`) when JSON text ends early.

Lower-level pieces are available too: `encode_long`, `decode_long` and
`read_long` in `avrokit.primitives`; `new_name` and `name_from_schema_map` in
`avrokit.names`; `to_signed_bytes`, `to_signed_fixed_bytes`,
`from_signed_bytes` and `precision_and_scale` in `avrokit.schema`.

## Object Container Files

```python
import io
from avrokit.ocf import OCFReader
from avrokit.ocf_writer import OCFWriter

buf = io.BytesIO()
writer = OCFWriter(buf, schema='{"type": "long"}', compression="deflate",
                   metadata={"origin": b"example"})
writer.append([13, 42, -12])

buf.seek(0)
reader = OCFReader(buf)
print(reader.compression_name, reader.metadata["origin"])
for datum in reader:
    print(datum)
```

`OCFWriter(stream, codec=None, schema="", compression=None, metadata=None)`
takes either a ready `Codec` or schema text; `compression` is a
`Compression` member or its label (`"null"`, `"deflate"`, `"snappy"`), and
defaults to `null`. `append` writes the items in blocks of at most
2,147,483,647 items each.

When the writer is handed an existing, non-empty file opened for reading and
writing (for example with mode `"r+b"`), it reads the file's header, reuses
its schema and compression (ignoring the ones passed in), checks the framing
of every existing block, and appends new blocks at the end. `writer.codec`
and `writer.compression_name` report what is in use.

Iterating an `OCFReader` yields each datum. A failure raises `OCFError`, and
iterating again raises the same error until `skip_block()` is called, which
drops the rest of the current block so reading can resume at the next one.
The reader also exposes `codec`, `metadata`, `compression_name`,
`remaining_block_items` and the parsed `header`.

`new_ocf_header`, `read_ocf_header` and `write_ocf_header` in `avrokit.ocf`
work with `OCFHeader` values directly.

## Fingerprints

```python
from avrokit.rabin import rabin, fingerprint_from_soe

rabin(b'"int"')                       # 0x7275d51a3f395c8f
fingerprint, payload = fingerprint_from_soe(data)
```

`fingerprint_from_soe` raises `NotSingleObjectEncodedError` when the buffer is
too short or does not start with the `C3 01` marker.

## What it does not do

- There is no command-line program; everything is used from Python.
- Codecs do not resolve one schema against another: data is read with the
  schema it was written with.
- Codecs do not compute a schema's canonical form or fingerprint; `rabin`
  fingerprints whatever bytes it is given.