"""Small helpers for scanning JSON text buffers."""

from __future__ import annotations

# Byte values treated as whitespace when read as single code points.
_WHITESPACE = frozenset(b"\t\n\v\f\r \x85\xa0")


class ShortBufferError(ValueError):
    """Raised when a buffer ends before the expected data."""

    def __init__(self, message: str = "short buffer") -> None:
        super().__init__(message)


def advance_to_non_whitespace(buf: bytes) -> bytes:
    """Return ``buf`` from its first non-whitespace byte onwards."""
    for index, byte in enumerate(buf):
        if byte not in _WHITESPACE:
            return buf[index:]
    raise ShortBufferError()


def advance_and_consume(buf: bytes, expected: str | bytes | int) -> bytes:
    """Skip whitespace, require the next byte to be ``expected``, and drop it."""
    code = expected if isinstance(expected, int) else ord(expected)
    buf = advance_to_non_whitespace(buf)
    actual = buf[0]
    if actual != code:
        raise ValueError(f"expected: {chr(code)!r}; actual: {chr(actual)!r}")
    return buf[1:]