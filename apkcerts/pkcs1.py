"""Parsing and encoding of RSA private keys in PKCS #1 form."""

from __future__ import annotations

from cryptography.hazmat.primitives.asymmetric import rsa

from .der import (
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_SEQUENCE,
    DerElement,
    decode_integer,
    encode_integer,
    encode_sequence,
    parse_all,
    parse_element,
)

_MAX_PUBLIC_EXPONENT = (1 << 31) - 1


def _is_integer(element: DerElement) -> bool:
    return element.tag_class == CLASS_UNIVERSAL and element.tag == TAG_INTEGER


def _is_sequence(element: DerElement) -> bool:
    return (
        element.tag_class == CLASS_UNIVERSAL
        and element.tag == TAG_SEQUENCE
        and element.constructed
    )


def _parse_additional_primes(element: DerElement) -> list[int]:
    primes = []
    for item in parse_all(element.content):
        if not _is_sequence(item):
            raise ValueError("asn1: structure error: additional prime is not a SEQUENCE")
        values = [decode_integer(part.content) for part in parse_all(item.content) if _is_integer(part)]
        if len(values) < 3:
            raise ValueError("asn1: structure error: additional prime is truncated")
        primes.append(values[0])
    return primes


def _validate(n: int, e: int, d: int, primes: list[int]) -> None:
    if e < 2:
        raise ValueError("crypto/rsa: public exponent too small")
    if e > _MAX_PUBLIC_EXPONENT:
        raise ValueError("crypto/rsa: public exponent too large")
    modulus = 1
    for prime in primes:
        if prime <= 1:
            raise ValueError("crypto/rsa: invalid prime value")
        modulus *= prime
    if modulus != n:
        raise ValueError("crypto/rsa: invalid modulus")
    if any((d * e) % (prime - 1) != 1 % (prime - 1) for prime in primes):
        raise ValueError("crypto/rsa: invalid exponents")


def parse_pkcs1_private_key(der: bytes) -> rsa.RSAPrivateKey:
    """Return an RSA private key from its PKCS #1 DER encoding."""
    element, rest = parse_element(bytes(der))
    if rest:
        raise ValueError("asn1: syntax error: trailing data")
    if not _is_sequence(element):
        raise ValueError("asn1: structure error: PKCS#1 private key is not a SEQUENCE")

    items = parse_all(element.content)
    values: list[int] = []
    index = 0
    while index < len(items) and len(values) < 9 and _is_integer(items[index]):
        values.append(decode_integer(items[index].content))
        index += 1
    if len(values) < 6:
        raise ValueError("asn1: structure error: PKCS#1 private key is truncated")
    version, n, e, d, p, q = values[:6]

    additional: list[int] = []
    if index < len(items) and _is_sequence(items[index]):
        additional = _parse_additional_primes(items[index])

    if version > 1:
        raise ValueError("x509: unsupported private key version")
    if n <= 0 or d <= 0 or p <= 0 or q <= 0:
        raise ValueError("x509: private key contains zero or negative value")
    if any(prime <= 0 for prime in additional):
        raise ValueError("x509: private key contains zero or negative prime")

    _validate(n, e, d, [p, q, *additional])
    if additional:
        raise ValueError("x509: multi-prime RSA private keys are not supported")

    numbers = rsa.RSAPrivateNumbers(
        p=p,
        q=q,
        d=d,
        dmp1=rsa.rsa_crt_dmp1(d, p),
        dmq1=rsa.rsa_crt_dmq1(d, q),
        iqmp=rsa.rsa_crt_iqmp(p, q),
        public_numbers=rsa.RSAPublicNumbers(e, n),
    )
    try:
        return numbers.private_key()
    except ValueError as exc:
        raise ValueError(f"x509: {exc}") from exc


def marshal_pkcs1_private_key(key: rsa.RSAPrivateKey) -> bytes:
    """Encode an RSA private key in PKCS #1 DER form."""
    numbers = key.private_numbers()
    public = numbers.public_numbers
    return encode_sequence(
        encode_integer(0),
        encode_integer(public.n),
        encode_integer(public.e),
        encode_integer(numbers.d),
        encode_integer(numbers.p),
        encode_integer(numbers.q),
        encode_integer(numbers.dmp1),
        encode_integer(numbers.dmq1),
        encode_integer(numbers.iqmp),
    )