"""Creation of PKCS #7 signed-data and enveloped-data structures."""

from __future__ import annotations

import datetime
import enum
import hashlib
import os
import string
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from Crypto.Cipher import AES, DES
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .der import (
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_BOOLEAN,
    TAG_GENERALIZED_TIME,
    TAG_PRINTABLE_STRING,
    TAG_SEQUENCE,
    TAG_UTC_TIME,
    TAG_UTF8_STRING,
    DerElement,
    DerError,
    encode_element,
    encode_integer,
    encode_octet_string,
    encode_oid,
    encode_sequence,
    encode_set,
    parse_all,
    parse_element,
)
from .pkcs7 import (
    OID_ATTRIBUTE_CONTENT_TYPE,
    OID_ATTRIBUTE_MESSAGE_DIGEST,
    OID_ATTRIBUTE_SIGNING_TIME,
    OID_DATA,
    OID_DIGEST_ALGORITHM_SHA1,
    OID_ENCRYPTION_ALGORITHM_AES128_GCM,
    OID_ENCRYPTION_ALGORITHM_DES_CBC,
    OID_ENCRYPTION_ALGORITHM_RSA,
    OID_ENVELOPED_DATA,
    OID_SIGNED_DATA,
    Pkcs7Error,
    UnsupportedAlgorithmError,
)

_GCM_NONCE_SIZE = 12
_GCM_TAG_SIZE = 16
_PRINTABLE = frozenset(string.ascii_letters + string.digits + " '()+,-./:=?*")


class ContentEncryptionAlgorithm(enum.Enum):
    """Symmetric algorithms that encrypt enveloped content."""

    DES_CBC = 0
    AES128_GCM = 1


@dataclass(frozen=True)
class Attribute:
    """An extra signed attribute.

    The value may be a DerElement (written as is), bytes (OCTET STRING),
    bool, int, datetime, str, or a tuple of ints (OBJECT IDENTIFIER).
    """

    type: str
    value: Any


@dataclass
class SignerInfoConfig:
    """Optional values to include when adding a signer."""

    extra_signed_attributes: list[Attribute] = field(default_factory=list)


def _encode_time(value: datetime.datetime) -> bytes:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc)
    if 1950 <= value.year < 2050:
        text = value.strftime("%y%m%d%H%M%S") + "Z"
        return encode_element(CLASS_UNIVERSAL, TAG_UTC_TIME, False, text.encode("ascii"))
    text = f"{value.year:04d}" + value.strftime("%m%d%H%M%S") + "Z"
    return encode_element(CLASS_UNIVERSAL, TAG_GENERALIZED_TIME, False, text.encode("ascii"))


def _marshal_value(value: Any) -> bytes:
    if isinstance(value, DerElement):
        return value.encoded
    if isinstance(value, (bytes, bytearray)):
        return encode_octet_string(bytes(value))
    if isinstance(value, bool):
        return encode_element(CLASS_UNIVERSAL, TAG_BOOLEAN, False, b"\xff" if value else b"\x00")
    if isinstance(value, int):
        return encode_integer(value)
    if isinstance(value, datetime.datetime):
        return _encode_time(value)
    if isinstance(value, str):
        tag = TAG_PRINTABLE_STRING if all(ch in _PRINTABLE for ch in value) else TAG_UTF8_STRING
        return encode_element(CLASS_UNIVERSAL, tag, False, value.encode("utf-8"))
    if isinstance(value, tuple) and all(isinstance(part, int) for part in value):
        try:
            return encode_oid(value)
        except DerError as exc:
            raise Pkcs7Error(str(exc)) from exc
    raise Pkcs7Error(f"asn1: cannot marshal value of type {type(value).__name__}")


def _oid_value(oid: str) -> DerElement:
    element, _ = parse_element(encode_oid(oid))
    return element


def _attributes_for_marshaling(attrs: Iterable[tuple[str, Any]]) -> list[bytes]:
    encoded = [
        encode_sequence(encode_oid(attr_type), encode_set(_marshal_value(value)))
        for attr_type, value in attrs
    ]
    return sorted(encoded)


def _algorithm(oid: str, parameters: bytes = b"") -> bytes:
    return encode_sequence(encode_oid(oid), parameters)


def _content_info(oid: str, content: Optional[bytes]) -> bytes:
    explicit = b"" if content is None else encode_element(CLASS_CONTEXT, 0, True, content)
    return encode_sequence(encode_oid(oid), explicit)


def _der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def _issuer_and_serial(cert: x509.Certificate) -> bytes:
    tbs, _ = parse_element(cert.tbs_certificate_bytes)
    items = parse_all(tbs.content)
    if items and items[0].tag_class == CLASS_CONTEXT and items[0].tag == 0:
        items = items[1:]
    if len(items) < 3:
        raise Pkcs7Error("pkcs7: malformed certificate")
    return encode_sequence(items[2].encoded, encode_integer(cert.serial_number))


class SignedData:
    """A signed-data payload under construction."""

    def __init__(self, data: bytes) -> None:
        data = bytes(data)
        self._content_type = OID_DATA
        self._content: Optional[bytes] = encode_octet_string(data)
        self._message_digest = hashlib.sha1(data).digest()
        self._digest_algorithms = [_algorithm(OID_DIGEST_ALGORITHM_SHA1)]
        self._signer_infos: list[bytes] = []
        self.certificates: list[x509.Certificate] = []

    def add_signer(
        self,
        cert: x509.Certificate,
        private_key: Any,
        config: Optional[SignerInfoConfig] = None,
    ) -> None:
        """Sign attributes about the content and add the certificate to the payload."""
        config = config or SignerInfoConfig()
        attrs: list[tuple[str, Any]] = [
            (OID_ATTRIBUTE_CONTENT_TYPE, _oid_value(self._content_type)),
            (OID_ATTRIBUTE_MESSAGE_DIGEST, self._message_digest),
            (OID_ATTRIBUTE_SIGNING_TIME, datetime.datetime.now(datetime.timezone.utc)),
        ]
        attrs.extend((attr.type, attr.value) for attr in config.extra_signed_attributes)
        final_attrs = _attributes_for_marshaling(attrs)

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise UnsupportedAlgorithmError()
        signature = private_key.sign(encode_set(*final_attrs), padding.PKCS1v15(), hashes.SHA1())

        signer = encode_sequence(
            encode_integer(1),
            _issuer_and_serial(cert),
            _algorithm(OID_DIGEST_ALGORITHM_SHA1),
            encode_element(CLASS_CONTEXT, 0, True, b"".join(final_attrs)),
            _algorithm(OID_ENCRYPTION_ALGORITHM_RSA),
            encode_octet_string(signature),
        )
        self.certificates.append(cert)
        self._signer_infos.append(signer)

    def add_certificate(self, cert: x509.Certificate) -> None:
        """Add a certificate to the payload, such as a parent certificate."""
        self.certificates.append(cert)

    def detach(self) -> None:
        """Remove the content, making a detached signature; call right before finish."""
        self._content_type = OID_SIGNED_DATA
        self._content = None

    def finish(self) -> bytes:
        """Encode the content, certificates and signers."""
        certs = encode_element(
            CLASS_CONTEXT, 0, True, b"".join(_der(cert) for cert in self.certificates)
        )
        inner = encode_sequence(
            encode_integer(1),
            encode_set(*self._digest_algorithms),
            _content_info(self._content_type, self._content),
            certs,
            encode_set(*self._signer_infos),
        )
        return _content_info(OID_SIGNED_DATA, inner)


def new_signed_data(data: bytes) -> SignedData:
    """Start a signed-data payload holding data."""
    return SignedData(data)


def degenerate_certificate(cert: bytes) -> bytes:
    """Build a signed-data structure holding only the given DER certificate(s)."""
    inner = encode_sequence(
        encode_integer(1),
        encode_set(),
        _content_info(OID_DATA, None),
        encode_element(CLASS_CONTEXT, 0, True, bytes(cert)),
        encode_element(CLASS_CONTEXT, 1, True, b""),
        encode_set(),
    )
    return _content_info(OID_SIGNED_DATA, inner)


def _encrypted_content(ciphertext: bytes) -> bytes:
    return encode_element(CLASS_CONTEXT, 0, True, encode_octet_string(ciphertext))


def _encrypt_des_cbc(content: bytes) -> tuple[bytes, bytes]:
    key = os.urandom(8)
    iv = os.urandom(DES.block_size)
    pad = DES.block_size - len(content) % DES.block_size
    ciphertext = DES.new(key, DES.MODE_CBC, iv=iv).encrypt(content + bytes([pad]) * pad)
    eci = encode_sequence(
        encode_oid(OID_DATA),
        _algorithm(OID_ENCRYPTION_ALGORITHM_DES_CBC, encode_octet_string(iv)),
        _encrypted_content(ciphertext),
    )
    return key, eci


def _encrypt_aes128_gcm(content: bytes) -> tuple[bytes, bytes]:
    key = os.urandom(16)
    nonce = os.urandom(_GCM_NONCE_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=_GCM_TAG_SIZE)
    sealed, tag = cipher.encrypt_and_digest(content)
    params = encode_sequence(
        encode_element(CLASS_CONTEXT, 4, False, nonce),
        encode_integer(_GCM_TAG_SIZE),
    )
    wrapped = encode_element(CLASS_UNIVERSAL, TAG_SEQUENCE, False, params)
    eci = encode_sequence(
        encode_oid(OID_DATA),
        _algorithm(OID_ENCRYPTION_ALGORITHM_AES128_GCM, wrapped),
        _encrypted_content(sealed + tag),
    )
    return key, eci


def _encrypt_key(key: bytes, recipient: x509.Certificate) -> bytes:
    public_key = recipient.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise UnsupportedAlgorithmError()
    return public_key.encrypt(key, padding.PKCS1v15())


def encrypt(
    content: bytes,
    recipients: Iterable[x509.Certificate],
    algorithm: ContentEncryptionAlgorithm = ContentEncryptionAlgorithm.DES_CBC,
) -> bytes:
    """Build an enveloped-data structure with the key encrypted for each recipient."""
    content = bytes(content)
    if algorithm is ContentEncryptionAlgorithm.DES_CBC:
        key, eci = _encrypt_des_cbc(content)
    elif algorithm is ContentEncryptionAlgorithm.AES128_GCM:
        key, eci = _encrypt_aes128_gcm(content)
    else:
        raise UnsupportedAlgorithmError(
            "pkcs7: cannot encrypt content: only DES-CBC and AES-128-GCM supported"
        )

    recipient_infos = [
        encode_sequence(
            encode_integer(0),
            _issuer_and_serial(recipient),
            _algorithm(OID_ENCRYPTION_ALGORITHM_RSA),
            encode_octet_string(_encrypt_key(key, recipient)),
        )
        for recipient in recipients
    ]
    envelope = encode_sequence(encode_integer(0), encode_set(*recipient_infos), eci)
    return _content_info(OID_ENVELOPED_DATA, envelope)