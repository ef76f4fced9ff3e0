import pytest

from apkcerts.der import (
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_OID,
    TAG_SEQUENCE,
    TAG_SET,
    DerError,
    decode_integer,
    decode_oid,
    encode_element,
    encode_integer,
    encode_length,
    encode_octet_string,
    encode_oid,
    encode_sequence,
    encode_set,
    parse_all,
    parse_element,
)


@pytest.mark.parametrize(
    "length, expected",
    [(0, b"\x00"), (120, b"\x78"), (200, b"\x81\xc8"), (500, b"\x82\x01\xf4")],
)
def test_encode_length_examples(length, expected):
    assert encode_length(length) == expected


def test_encode_length_negative():
    with pytest.raises(DerError):
        encode_length(-1)


@pytest.mark.parametrize("value", [0, 1, 127, 128, 255, 256, -1, -128, -129, 2**64, -(2**70)])
def test_integer_round_trip(value):
    element, rest = parse_element(encode_integer(value))
    assert rest == b""
    assert element.tag == TAG_INTEGER
    assert element.tag_class == CLASS_UNIVERSAL
    assert decode_integer(element.content) == value


def test_integer_minimal_with_sign_octet():
    assert encode_integer(128) == bytes.fromhex("02020080")


def test_decode_integer_empty():
    with pytest.raises(DerError):
        decode_integer(b"")


@pytest.mark.parametrize("oid", ["1.2.840.113549.1.7.2", "2.5.4.3", "2.999.1", "1.3.14.3.2.26"])
def test_oid_round_trip(oid):
    element, rest = parse_element(encode_oid(oid))
    assert rest == b""
    assert element.tag == TAG_OID
    assert decode_oid(element.content) == oid


def test_oid_from_integers_matches_dotted():
    assert encode_oid((1, 2, 840, 113549, 1, 7, 1)) == encode_oid("1.2.840.113549.1.7.1")


def test_oid_known_encoding():
    assert encode_oid("1.2.840.113549.1.7.2") == bytes.fromhex("06092a864886f70d010702")


@pytest.mark.parametrize("oid", ["3.1", "1", "1.40", "a.b"])
def test_invalid_oid(oid):
    with pytest.raises(DerError):
        encode_oid(oid)


def test_decode_oid_truncated():
    with pytest.raises(DerError):
        decode_oid(b"\x2a\x86")


def test_nested_sequence_and_set():
    seq = encode_sequence(encode_integer(1), encode_set(encode_octet_string(b"ab")))
    element, rest = parse_element(seq + b"\xff")
    assert rest == b"\xff"
    assert element.encoded == seq
    assert element.tag == TAG_SEQUENCE and element.constructed
    first, second = parse_all(element.content)
    assert decode_integer(first.content) == 1
    assert second.tag == TAG_SET and second.constructed
    (inner,) = parse_all(second.content)
    assert inner.tag == TAG_OCTET_STRING
    assert inner.content == b"ab"


def test_high_tag_number_round_trip():
    encoded = encode_element(CLASS_CONTEXT, 200, True, b"\x05\x00")
    element, rest = parse_element(encoded)
    assert rest == b""
    assert element.tag == 200
    assert element.tag_class == CLASS_CONTEXT
    assert element.constructed
    assert element.content == b"\x05\x00"


def test_long_content_round_trip():
    payload = bytes(range(256)) * 2
    element, _ = parse_element(encode_octet_string(payload))
    assert element.content == payload


@pytest.mark.parametrize("data", [b"", b"\x30\x80\x00\x00", b"\x04\x05ab", b"\x04", b"\x04\x82\x01"])
def test_parse_errors(data):
    with pytest.raises(DerError):
        parse_element(data)