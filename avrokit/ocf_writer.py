"""Creating or appending to Avro Object Container Files."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Any, BinaryIO

from .ocf import (
    SYNC_LENGTH,
    Compression,
    OCFError,
    OCFHeader,
    _compress,
    new_ocf_header,
    read_ocf_header,
    write_ocf_header,
)
from .primitives import MAX_BLOCK_COUNT, MAX_BLOCK_SIZE, Codec, encode_long, read_long


def _existing_size(stream: Any) -> int:
    """Return the size of the file behind ``stream``, or 0 when it is not a file."""
    try:
        return os.fstat(stream.fileno()).st_size
    except (AttributeError, OSError, ValueError):
        return 0


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


def _as_list(data: Any) -> list[Any]:
    if isinstance(data, (str, bytes, bytearray, Mapping)) or not isinstance(data, Iterable):
        raise OCFError(f"cannot append data: expected sequence; received: {type(data).__name__}")
    return list(data)


class OCFWriter:
    """Writes data items in blocks to a new or existing Object Container File.

    When ``stream`` is a non-empty file, its existing header is read and its
    schema and compression are used; the given ``codec``, ``schema``,
    ``compression`` and ``metadata`` are then ignored and the stream is
    advanced to its end so that new blocks are appended.
    """

    def __init__(
        self,
        stream: BinaryIO,
        codec: Codec | None = None,
        schema: str = "",
        compression: Compression | str | None = None,
        metadata: Mapping[str, bytes] | None = None,
    ) -> None:
        if stream is None:
            raise OCFError("cannot create OCFWriter when stream is None")
        self._stream = stream

        if _existing_size(stream) > 0:
            try:
                self.header = read_ocf_header(stream)
                self._scan_to_tail()
            except OCFError as err:
                raise OCFError(f"cannot create OCFWriter: {err}") from err
            return

        try:
            self.header: OCFHeader = new_ocf_header(codec, schema, compression, metadata)
            write_ocf_header(self.header, stream)
        except OCFError as err:
            raise OCFError(f"cannot create OCFWriter: {err}") from err

    @property
    def codec(self) -> Codec:
        """The codec in use, which may come from an existing file."""
        return self.header.codec

    @property
    def compression_name(self) -> str:
        """The label of the compression algorithm in use."""
        return self.header.compression.value

    def _scan_to_tail(self) -> None:
        """Skip over every existing block, checking its framing, up to end of file."""
        stream = self._stream
        while True:
            try:
                count = read_long(stream)
            except EOFError:
                return
            except ValueError as err:
                raise OCFError(f"cannot read block count: {err}") from err
            if count <= 0:
                raise OCFError(f"cannot read when block count is not greater than 0: {count}")
            if count > MAX_BLOCK_COUNT:
                raise OCFError(
                    f"cannot read when block count exceeds maximum block count: {count} > {MAX_BLOCK_COUNT}"
                )
            try:
                size = read_long(stream)
            except (EOFError, ValueError) as err:
                raise OCFError(f"cannot read block size: {err}") from err
            if size <= 0:
                raise OCFError(f"cannot read when block size is not greater than 0: {size}")
            if size > MAX_BLOCK_SIZE:
                raise OCFError(
                    f"cannot read when block size exceeds maximum block size: {size} > {MAX_BLOCK_SIZE}"
                )
            skipped = _read_full(stream, size)
            if len(skipped) != size:
                raise OCFError(f"cannot seek to next block: EOF: read {len(skipped)} of {size} bytes")
            sync = _read_full(stream, SYNC_LENGTH)
            if len(sync) != SYNC_LENGTH:
                raise OCFError(f"cannot read sync marker: read {len(sync)} out of {SYNC_LENGTH} bytes: EOF")
            if sync != self.header.sync_marker:
                raise OCFError(f"sync marker mismatch: {sync.hex()} != {self.header.sync_marker.hex()}")

    def append(self, data: Iterable[Any]) -> None:
        """Append the items of ``data``, in blocks of at most the maximum block count."""
        items = _as_list(data)
        chunks = [items[start : start + MAX_BLOCK_COUNT] for start in range(0, len(items), MAX_BLOCK_COUNT)]
        for chunk in chunks or [[]]:
            self._write_block(chunk)

    def _write_block(self, items: list[Any]) -> None:
        parts = []
        for datum in items:
            try:
                parts.append(self.header.codec.encode_binary(datum))
            except ValueError as err:
                raise OCFError(f"cannot translate datum to binary: {datum!r}; {err}") from err
        block = _compress(self.header.compression, b"".join(parts))
        data = encode_long(len(items)) + encode_long(len(block)) + block + self.header.sync_marker
        try:
            written = self._stream.write(data)
            flush = getattr(self._stream, "flush", None)
            if flush is not None:
                flush()
        except OSError as err:
            raise OCFError(f"cannot write block: {err}") from err
        if isinstance(written, int) and written < len(data):
            raise OCFError("cannot write block: short write")