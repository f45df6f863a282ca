import pytest

from avrokit.rabin import NotSingleObjectEncodedError, fingerprint_from_soe, rabin


def test_rabin_int():
    assert rabin(b'"int"') == 0x7275D51A3F395C8F


def test_rabin_string():
    assert rabin(b'"string"') == 0x8F014872634503C7


def test_rabin_empty_is_seed():
    assert rabin(b"") == 0xC15D213AA4D7A795


def test_rabin_fits_in_64_bits():
    for data in (b"x", b'"long"', bytes(range(256))):
        assert 0 <= rabin(data) < 2**64


def test_fingerprint_from_soe_round_trip():
    fp = rabin(b'"int"')
    buf = b"\xc3\x01" + fp.to_bytes(8, "little") + b"payload"
    got, rest = fingerprint_from_soe(buf)
    assert got == 0x7275D51A3F395C8F
    assert rest == b"payload"


def test_fingerprint_from_soe_header_only():
    buf = b"\xc3\x01" + (0x8F014872634503C7).to_bytes(8, "little")
    assert fingerprint_from_soe(buf) == (0x8F014872634503C7, b"")


def test_fingerprint_from_soe_short_buffer():
    with pytest.raises(NotSingleObjectEncodedError, match="short buffer"):
        fingerprint_from_soe(b"\xc3\x01\x00")


def test_fingerprint_from_soe_bad_prefix():
    with pytest.raises(NotSingleObjectEncodedError, match="unknown SOE prefix"):
        fingerprint_from_soe(b"\xc3\x02" + bytes(8))