"""Avro Object Container File headers, block compression and reading."""

from __future__ import annotations

import os
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Iterator, Mapping

from .primitives import MAX_BLOCK_COUNT, MAX_BLOCK_SIZE, MIN_LONG, Codec, read_long
from .schema import new_codec

MAGIC = b"Obj\x01"
SYNC_LENGTH = 16
_METADATA_SCHEMA = '{"type":"map","values":"bytes"}'


class OCFError(ValueError):
    """Raised when an Object Container File cannot be read or written."""


class Compression(Enum):
    """Compression algorithms used for OCF blocks."""

    NULL = "null"
    DEFLATE = "deflate"
    SNAPPY = "snappy"


@dataclass
class OCFHeader:
    """The header of an Object Container File."""

    codec: Codec
    compression: Compression = Compression.NULL
    sync_marker: bytes = b"\x00" * SYNC_LENGTH
    metadata: dict[str, bytes] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# stream helpers
# ---------------------------------------------------------------------------


def _read_full(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_bytes(stream: BinaryIO) -> bytes:
    try:
        size = read_long(stream)
    except (EOFError, ValueError) as err:
        raise OCFError(f"cannot read bytes: cannot read size: {err}") from err
    if size < 0:
        raise OCFError(f"cannot read bytes: size is negative: {size}")
    if size > MAX_BLOCK_SIZE:
        raise OCFError(f"cannot read bytes: size exceeds maximum block size: {size} > {MAX_BLOCK_SIZE}")
    data = _read_full(stream, size)
    if len(data) != size:
        raise OCFError(f"cannot read bytes: unexpected EOF: read {len(data)} of {size} bytes")
    return data


def _read_map_block_count(stream: BinaryIO) -> int:
    try:
        count = read_long(stream)
    except (EOFError, ValueError) as err:
        raise OCFError(f"cannot read map block count: {err}") from err
    if count < 0:
        if count == MIN_LONG:
            raise OCFError(f"cannot read map with block count: {count}")
        count = -count
        try:
            read_long(stream)
        except (EOFError, ValueError) as err:
            raise OCFError(f"cannot read map block size: {err}") from err
    if count > MAX_BLOCK_COUNT:
        raise OCFError(f"cannot read map when block count exceeds maximum block count: {count} > {MAX_BLOCK_COUNT}")
    return count


def _read_metadata(stream: BinaryIO) -> dict[str, bytes]:
    metadata: dict[str, bytes] = {}
    count = _read_map_block_count(stream)
    while count:
        for _ in range(count):
            try:
                raw_key = _read_bytes(stream)
                key = raw_key.decode("utf-8")
            except (OCFError, UnicodeDecodeError) as err:
                raise OCFError(f"cannot read map key: {err}") from err
            if key in metadata:
                raise OCFError(f"cannot read map: duplicate key: {key!r}")
            try:
                metadata[key] = _read_bytes(stream)
            except OCFError as err:
                raise OCFError(f"cannot read map value for key {key!r}: {err}") from err
        count = _read_map_block_count(stream)
    return metadata


# ---------------------------------------------------------------------------
# headers
# ---------------------------------------------------------------------------


def new_ocf_header(
    codec: Codec | None = None,
    schema: str = "",
    compression: Compression | str | None = None,
    metadata: Mapping[str, bytes] | None = None,
) -> OCFHeader:
    """Create a header for a new file, with a random sync marker."""
    if isinstance(compression, Compression):
        chosen = compression
    elif not compression:
        chosen = Compression.NULL
    else:
        try:
            chosen = Compression(compression)
        except ValueError:
            raise OCFError(
                f"cannot create OCF header using unrecognized compression algorithm: {compression!r}"
            ) from None

    if codec is None:
        if not schema:
            raise OCFError("cannot create OCF header without either Codec or Schema specified")
        try:
            codec = new_codec(schema)
        except ValueError as err:
            raise OCFError(f"cannot create OCF header: {err}") from err

    return OCFHeader(codec, chosen, os.urandom(SYNC_LENGTH), dict(metadata or {}))


def read_ocf_header(stream: BinaryIO) -> OCFHeader:
    """Read and validate an OCF header from a binary stream."""
    magic = _read_full(stream, len(MAGIC))
    if len(magic) != len(MAGIC):
        raise OCFError("cannot read OCF header magic bytes: EOF")
    if magic != MAGIC:
        raise OCFError(f"cannot read OCF header with invalid magic bytes: {magic!r}")

    try:
        metadata = _read_metadata(stream)
    except OCFError as err:
        raise OCFError(f"cannot read OCF header metadata: {err}") from err

    compression = Compression.NULL
    if "avro.codec" in metadata:
        label = metadata["avro.codec"].decode("utf-8", errors="replace")
        try:
            compression = Compression(label)
        except ValueError:
            raise OCFError(
                f"cannot read OCF header using unrecognized compression algorithm from avro.codec: {label!r}"
            ) from None

    if "avro.schema" not in metadata:
        raise OCFError("cannot read OCF header without avro.schema")
    try:
        codec = new_codec(metadata["avro.schema"])
    except (ValueError, UnicodeDecodeError) as err:
        raise OCFError(f"cannot read OCF header with invalid avro.schema: {err}") from err

    sync_marker = _read_full(stream, SYNC_LENGTH)
    if len(sync_marker) != SYNC_LENGTH:
        raise OCFError(
            "cannot read OCF header without sync marker: "
            f"only read {len(sync_marker)} of {SYNC_LENGTH} bytes: EOF"
        )
    return OCFHeader(codec, compression, sync_marker, metadata)


def write_ocf_header(header: OCFHeader, stream: BinaryIO) -> None:
    """Write ``header`` to a binary stream."""
    meta: dict[str, Any] = dict(header.metadata)
    meta["avro.schema"] = header.codec.schema.encode("utf-8")
    meta["avro.codec"] = header.compression.value.encode("utf-8")
    try:
        encoded = _metadata_codec().binary_from_native(MAGIC, meta)
    except ValueError as err:
        raise OCFError(f"cannot write OCF header: {err}") from err
    data = encoded + header.sync_marker
    try:
        written = stream.write(data)
    except OSError as err:
        raise OCFError(f"cannot write OCF header: {err}") from err
    if isinstance(written, int) and written < len(data):
        raise OCFError("cannot write OCF header: short write")


_METADATA_CODECS: list[Codec] = []


def _metadata_codec() -> Codec:
    if not _METADATA_CODECS:
        _METADATA_CODECS.append(new_codec(_METADATA_SCHEMA))
    return _METADATA_CODECS[0]


# ---------------------------------------------------------------------------
# block compression
# ---------------------------------------------------------------------------


def _uvarint(value: int) -> bytes:
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _read_uvarint(data: bytes) -> tuple[int, int]:
    result = 0
    for index, byte in enumerate(data[:5]):
        result |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return result, index + 1
    raise OCFError("snappy: corrupt input: invalid length header")


def _snappy_literal(chunk: bytes) -> bytes:
    size = len(chunk) - 1
    if size < 60:
        return bytes([size << 2]) + chunk
    width = (size.bit_length() + 7) // 8
    return bytes([(59 + width) << 2]) + size.to_bytes(width, "little") + chunk


def _snappy_copies(offset: int, length: int) -> bytes:
    out = bytearray()
    while length > 0:
        size = min(length, 64)
        out.append(((size - 1) << 2) | 2)
        out += offset.to_bytes(2, "little")
        length -= size
    return bytes(out)


def _snappy_compress(data: bytes) -> bytes:
    out = bytearray(_uvarint(len(data)))
    table: dict[bytes, int] = {}
    literal_start = 0
    index = 0
    end = len(data)
    while index + 4 <= end:
        key = data[index : index + 4]
        candidate = table.get(key)
        table[key] = index
        if candidate is None or index - candidate > 0xFFFF:
            index += 1
            continue
        length = 4
        while index + length < end and data[candidate + length] == data[index + length]:
            length += 1
        if literal_start < index:
            out += _snappy_literal(data[literal_start:index])
        out += _snappy_copies(index - candidate, length)
        index += length
        literal_start = index
    if literal_start < end:
        out += _snappy_literal(data[literal_start:])
    return bytes(out)


def _snappy_decompress(data: bytes) -> bytes:
    expected, pos = _read_uvarint(data)
    out = bytearray()
    end = len(data)
    while pos < end:
        tag = data[pos]
        pos += 1
        kind = tag & 3
        if kind == 0:
            size = tag >> 2
            if size >= 60:
                width = size - 59
                if pos + width > end:
                    raise OCFError("snappy: corrupt input: short literal length")
                size = int.from_bytes(data[pos : pos + width], "little")
                pos += width
            size += 1
            if pos + size > end:
                raise OCFError("snappy: corrupt input: short literal")
            out += data[pos : pos + size]
            pos += size
            continue
        if kind == 1:
            if pos >= end:
                raise OCFError("snappy: corrupt input: short copy")
            size = 4 + ((tag >> 2) & 7)
            offset = ((tag >> 5) << 8) | data[pos]
            pos += 1
        else:
            width = 2 if kind == 2 else 4
            if pos + width > end:
                raise OCFError("snappy: corrupt input: short copy")
            size = (tag >> 2) + 1
            offset = int.from_bytes(data[pos : pos + width], "little")
            pos += width
        if offset == 0 or offset > len(out):
            raise OCFError("snappy: corrupt input: invalid copy offset")
        start = len(out) - offset
        if offset >= size:
            out += out[start : start + size]
        else:
            for step in range(size):
                out.append(out[start + step])
    if len(out) != expected:
        raise OCFError(f"snappy: corrupt input: decoded {len(out)} of {expected} bytes")
    return bytes(out)


def _compress(compression: Compression, block: bytes) -> bytes:
    """Compress one block's payload as the file's algorithm requires."""
    if compression is Compression.DEFLATE:
        compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
        return compressor.compress(block) + compressor.flush()
    if compression is Compression.SNAPPY:
        return _snappy_compress(block) + zlib.crc32(block).to_bytes(4, "big")
    return block


def _decompress(compression: Compression, block: bytes) -> bytes:
    """Reverse :func:`_compress`, checking the snappy CRC32 trailer."""
    if compression is Compression.DEFLATE:
        try:
            decompressor = zlib.decompressobj(-15)
            return decompressor.decompress(block) + decompressor.flush()
        except zlib.error as err:
            raise OCFError(f"cannot decompress: {err}") from err
    if compression is Compression.SNAPPY:
        index = len(block) - 4
        if index <= 0:
            raise OCFError(f"cannot decompress snappy without CRC32 checksum: {len(block)}")
        try:
            decoded = _snappy_decompress(block[:index])
        except OCFError as err:
            raise OCFError(f"cannot decompress: {err}") from err
        actual = zlib.crc32(decoded)
        expected = int.from_bytes(block[index:], "big")
        if actual != expected:
            raise OCFError(f"snappy CRC32 checksum mismatch: {actual:x} != {expected:x}")
        return decoded
    return block


# ---------------------------------------------------------------------------
# reader
# ---------------------------------------------------------------------------


class OCFReader:
    """Reads data items from an Object Container File.

    Iterating yields each datum in turn. After an error inside a block,
    :meth:`skip_block` drops the rest of that block so iteration can resume
    at the next one.
    """

    def __init__(self, stream: BinaryIO) -> None:
        try:
            self.header = read_ocf_header(stream)
        except OCFError as err:
            raise OCFError(f"cannot create OCFReader: {err}") from err
        self._stream = stream
        self._block = b""
        self._remaining = 0
        self._error: OCFError | None = None

    @property
    def codec(self) -> Codec:
        """The codec built from the file's schema."""
        return self.header.codec

    @property
    def metadata(self) -> dict[str, bytes]:
        """The metadata stored in the file header."""
        return self.header.metadata

    @property
    def compression_name(self) -> str:
        """The label of the file's compression algorithm."""
        return self.header.compression.value

    @property
    def remaining_block_items(self) -> int:
        """How many items are left in the block being read."""
        return self._remaining

    def __iter__(self) -> Iterator[Any]:
        while True:
            if self._error is not None:
                raise self._error
            try:
                if self._remaining <= 0 and not self._load_block():
                    return
                try:
                    datum, self._block = self.header.codec.native_from_binary(self._block)
                except ValueError as err:
                    raise OCFError(f"cannot decode datum: {err}") from err
            except OCFError as err:
                self._error = err
                raise
            self._remaining -= 1
            yield datum

    def skip_block(self) -> None:
        """Discard the rest of the current block and clear the last error."""
        self._remaining = 0
        self._block = b""
        self._error = None

    def _load_block(self) -> bool:
        if self._block:
            raise OCFError(
                f"extra bytes between final datum in previous block and block sync marker: {len(self._block)}"
            )
        stream = self._stream
        try:
            count = read_long(stream)
        except EOFError:
            return False
        except ValueError as err:
            raise OCFError(f"cannot read block count: {err}") from err
        if count <= 0:
            raise OCFError(f"cannot decode when block count is not greater than 0: {count}")
        if count > MAX_BLOCK_COUNT:
            raise OCFError(f"cannot decode when block count exceeds maximum block count: {count} > {MAX_BLOCK_COUNT}")

        try:
            size = read_long(stream)
        except (EOFError, ValueError) as err:
            raise OCFError(f"cannot read block size: {err}") from err
        if size <= 0:
            raise OCFError(f"cannot decode when block size is not greater than 0: {size}")
        if size > MAX_BLOCK_SIZE:
            raise OCFError(f"cannot decode when block size exceeds maximum block size: {size} > {MAX_BLOCK_SIZE}")

        block = _read_full(stream, size)
        if len(block) != size:
            raise OCFError(f"cannot read block: unexpected EOF: read {len(block)} of {size} bytes")
        block = _decompress(self.header.compression, block)

        sync = _read_full(stream, SYNC_LENGTH)
        if len(sync) != SYNC_LENGTH:
            raise OCFError(f"cannot read sync marker: read {len(sync)} out of {SYNC_LENGTH} bytes: EOF")
        if sync != self.header.sync_marker:
            raise OCFError(f"sync marker mismatch: {sync.hex()} != {self.header.sync_marker.hex()}")

        self._block = block
        self._remaining = count
        return True