"""Parsing of unencrypted PKCS #8 private keys."""

from __future__ import annotations

from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .der import (
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_OID,
    TAG_SEQUENCE,
    DerElement,
    decode_oid,
    parse_all,
    parse_element,
)
from .pkcs1 import parse_pkcs1_private_key

OID_PUBLIC_KEY_RSA = "1.2.840.113549.1.1.1"
OID_PUBLIC_KEY_ECDSA = "1.2.840.10045.2.1"


def _is(element: DerElement, tag: int) -> bool:
    return element.tag_class == CLASS_UNIVERSAL and element.tag == tag


def parse_pkcs8_private_key(
    der: bytes,
) -> Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]:
    """Parse an unencrypted PKCS #8 private key holding an RSA or EC key."""
    element, _ = parse_element(bytes(der))
    if not _is(element, TAG_SEQUENCE):
        raise ValueError("asn1: structure error: PKCS#8 private key is not a SEQUENCE")
    items = parse_all(element.content)
    if (
        len(items) < 3
        or not _is(items[0], TAG_INTEGER)
        or not _is(items[1], TAG_SEQUENCE)
        or not _is(items[2], TAG_OCTET_STRING)
    ):
        raise ValueError("asn1: structure error: malformed PKCS#8 private key")
    algorithm_items = parse_all(items[1].content)
    if not algorithm_items or not _is(algorithm_items[0], TAG_OID):
        raise ValueError("asn1: structure error: malformed PKCS#8 algorithm identifier")
    algorithm = decode_oid(algorithm_items[0].content)

    if algorithm == OID_PUBLIC_KEY_RSA:
        try:
            return parse_pkcs1_private_key(items[2].content)
        except ValueError as exc:
            raise ValueError(
                "x509: failed to parse RSA private key embedded in PKCS#8: " + str(exc)
            ) from exc

    if algorithm == OID_PUBLIC_KEY_ECDSA:
        try:
            key = serialization.load_der_private_key(element.encoded, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ValueError(
                "x509: failed to parse EC private key embedded in PKCS#8: " + str(exc)
            ) from exc
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError(
                "x509: failed to parse EC private key embedded in PKCS#8: not an EC key"
            )
        return key

    raise ValueError(
        f"x509: PKCS#8 wrapping contained private key with unknown algorithm: {algorithm}"
    )