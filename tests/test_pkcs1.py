import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from apkcerts.der import encode_integer, encode_sequence
from apkcerts.pkcs1 import marshal_pkcs1_private_key, parse_pkcs1_private_key


@pytest.fixture(scope="module")
def key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _fields(key):
    numbers = key.private_numbers()
    return [
        numbers.public_numbers.n,
        numbers.public_numbers.e,
        numbers.d,
        numbers.p,
        numbers.q,
    ]


def test_round_trip(key):
    parsed = parse_pkcs1_private_key(marshal_pkcs1_private_key(key))
    assert parsed.private_numbers() == key.private_numbers()


def test_marshal_matches_traditional_encoding(key):
    expected = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    assert marshal_pkcs1_private_key(key) == expected


def test_parse_external_encoding(key):
    der = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    assert parse_pkcs1_private_key(der).private_numbers() == key.private_numbers()


def test_parse_without_crt_values(key):
    der = encode_sequence(*(encode_integer(v) for v in [0, *_fields(key)]))
    assert parse_pkcs1_private_key(der).private_numbers() == key.private_numbers()


def test_trailing_data_rejected(key):
    with pytest.raises(ValueError, match="trailing data"):
        parse_pkcs1_private_key(marshal_pkcs1_private_key(key) + b"\x00")


def test_unsupported_version(key):
    der = encode_sequence(*(encode_integer(v) for v in [2, *_fields(key)]))
    with pytest.raises(ValueError, match="unsupported private key version"):
        parse_pkcs1_private_key(der)


def test_zero_value_rejected(key):
    n, e, d, p, q = _fields(key)
    der = encode_sequence(*(encode_integer(v) for v in [0, 0, e, d, p, q]))
    with pytest.raises(ValueError, match="zero or negative value"):
        parse_pkcs1_private_key(der)


def test_negative_additional_prime_rejected(key):
    values = [1, *_fields(key)]
    prime = encode_sequence(encode_integer(-3), encode_integer(1), encode_integer(1))
    der = encode_sequence(*(encode_integer(v) for v in values), encode_sequence(prime))
    with pytest.raises(ValueError, match="zero or negative prime"):
        parse_pkcs1_private_key(der)


def test_inconsistent_modulus_rejected(key):
    n, e, d, p, q = _fields(key)
    der = encode_sequence(*(encode_integer(v) for v in [0, n + 2, e, d, p, q]))
    with pytest.raises(ValueError, match="invalid modulus"):
        parse_pkcs1_private_key(der)


def test_truncated_structure_rejected(key):
    n, e, d, _, _ = _fields(key)
    der = encode_sequence(*(encode_integer(v) for v in [0, n, e, d]))
    with pytest.raises(ValueError):
        parse_pkcs1_private_key(der)