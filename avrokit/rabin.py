"""CRC-64-AVRO (Rabin) fingerprints and single-object encoding headers."""

from __future__ import annotations

RABIN_EMPTY = 0xC15D213AA4D7A795

_SOE_MAGIC = b"\xc3\x01"
_SOE_HEADER_LEN = len(_SOE_MAGIC) + 8


def _build_table() -> tuple[int, ...]:
    table = []
    for i in range(256):
        fp = i
        for _ in range(8):
            fp = (fp >> 1) ^ (RABIN_EMPTY if fp & 1 else 0)
        table.append(fp)
    return tuple(table)


_TABLE = _build_table()


class NotSingleObjectEncodedError(ValueError):
    """Raised when a buffer does not start with a single-object encoding header."""


def rabin(buf: bytes) -> int:
    """Return the unsigned 64-bit Rabin fingerprint of ``buf``."""
    fp = RABIN_EMPTY
    for byte in buf:
        fp = (fp >> 8) ^ _TABLE[(fp ^ byte) & 0xFF]
    return fp


def fingerprint_from_soe(buf: bytes) -> tuple[int, bytes]:
    """Split a single-object encoded buffer into its schema fingerprint and payload."""
    if len(buf) < _SOE_HEADER_LEN:
        raise NotSingleObjectEncodedError("short buffer")
    prefix = bytes(buf[: len(_SOE_MAGIC)])
    if prefix != _SOE_MAGIC:
        raise NotSingleObjectEncodedError(f"unknown SOE prefix: {prefix.hex()}")
    fingerprint = int.from_bytes(buf[len(_SOE_MAGIC) : _SOE_HEADER_LEN], "little")
    return fingerprint, buf[_SOE_HEADER_LEN:]