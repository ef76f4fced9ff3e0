"""Parsing, signature verification and decryption of PKCS #7 structures."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Callable, Optional

from Crypto.Cipher import AES, DES, DES3
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .ber import BerError, ber_to_der
from .der import (
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_OID,
    TAG_SEQUENCE,
    TAG_SET,
    DerElement,
    DerError,
    decode_integer,
    decode_oid,
    encode_oid,
    encode_sequence,
    encode_set,
    parse_all,
    parse_element,
)

OID_DATA = "1.2.840.113549.1.7.1"
OID_SIGNED_DATA = "1.2.840.113549.1.7.2"
OID_ENVELOPED_DATA = "1.2.840.113549.1.7.3"
OID_SIGNED_AND_ENVELOPED_DATA = "1.2.840.113549.1.7.4"
OID_DIGESTED_DATA = "1.2.840.113549.1.7.5"
OID_ENCRYPTED_DATA = "1.2.840.113549.1.7.6"
OID_ATTRIBUTE_CONTENT_TYPE = "1.2.840.113549.1.9.3"
OID_ATTRIBUTE_MESSAGE_DIGEST = "1.2.840.113549.1.9.4"
OID_ATTRIBUTE_SIGNING_TIME = "1.2.840.113549.1.9.5"

OID_DIGEST_ALGORITHM_SHA1 = "1.3.14.3.2.26"
OID_ENCRYPTION_ALGORITHM_RSA = "1.2.840.113549.1.1.1"

OID_ENCRYPTION_ALGORITHM_DES_CBC = "1.3.14.3.2.7"
OID_ENCRYPTION_ALGORITHM_DES_EDE3_CBC = "1.2.840.113549.3.7"
OID_ENCRYPTION_ALGORITHM_AES256_CBC = "2.16.840.1.101.3.4.1.42"
OID_ENCRYPTION_ALGORITHM_AES128_GCM = "2.16.840.1.101.3.4.1.6"
OID_ENCRYPTION_ALGORITHM_AES128_CBC = "2.16.840.1.101.3.4.1.2"

_GCM_NONCE_SIZE = 12
_GCM_TAG_SIZE = 16


class Pkcs7Error(ValueError):
    """Raised when a PKCS #7 structure is malformed or does not verify."""


class UnsupportedContentTypeError(Pkcs7Error):
    """Raised when the content type is neither signed nor enveloped data."""

    def __init__(self, message: str = "pkcs7: cannot parse data: unimplemented content type") -> None:
        super().__init__(message)


class UnsupportedAlgorithmError(Pkcs7Error):
    """Raised when an algorithm or key type is not supported."""

    def __init__(
        self,
        message: str = "pkcs7: cannot decrypt data: only RSA, DES, DES-EDE3, AES-256-CBC and AES-128-GCM supported",
    ) -> None:
        super().__init__(message)


class NotEncryptedContentError(Pkcs7Error):
    """Raised when decrypting a structure that holds no enveloped data."""

    def __init__(self, message: str = "pkcs7: content data is a decryptable data type") -> None:
        super().__init__(message)


class MessageDigestMismatchError(Pkcs7Error):
    """Raised when the signed message digest does not match the content."""

    def __init__(self, expected_digest: bytes, actual_digest: bytes) -> None:
        self.expected_digest = expected_digest
        self.actual_digest = actual_digest
        super().__init__(
            "pkcs7: Message digest mismatch\n"
            f"\tExpected: {expected_digest.hex().upper()}\n"
            f"\tActual  : {actual_digest.hex().upper()}"
        )


@dataclass(frozen=True)
class AlgorithmIdentifier:
    """An algorithm object identifier with its optional parameters element."""

    algorithm: str
    parameters: Optional[DerElement] = None


@dataclass(frozen=True)
class IssuerAndSerial:
    """The DER encoded issuer name and the serial number of a certificate."""

    issuer_name: bytes
    serial_number: int


@dataclass(frozen=True)
class SignerAttribute:
    """An attribute type and the content octets of its value SET."""

    type: str
    value: bytes


def _encode_attribute(attr: SignerAttribute) -> bytes:
    return encode_sequence(encode_oid(attr.type), encode_set(attr.value))


def _unmarshal_attribute(attrs: list[SignerAttribute], attribute_type: str) -> DerElement:
    for attr in attrs:
        if attr.type == attribute_type:
            return _first_value(attr)
    raise Pkcs7Error("pkcs7: attribute type not in attributes")


def _first_value(attr: SignerAttribute) -> DerElement:
    try:
        element, _ = parse_element(attr.value)
    except DerError as exc:
        raise Pkcs7Error(str(exc)) from exc
    return element


@dataclass
class SignerInfo:
    """One signer of a signed-data structure."""

    version: int
    issuer_and_serial: IssuerAndSerial
    digest_algorithm: AlgorithmIdentifier
    authenticated_attributes: list[SignerAttribute]
    digest_encryption_algorithm: AlgorithmIdentifier
    encrypted_digest: bytes
    unauthenticated_attributes: list[SignerAttribute]

    def unmarshal_signed_attribute(self, attribute_type: str) -> DerElement:
        """Return the value of the single authenticated attribute of the given type."""
        found: Optional[DerElement] = None
        for attr in self.authenticated_attributes:
            if attr.type == attribute_type:
                if found is not None:
                    raise Pkcs7Error("pkcs7: attribute type has multiple values")
                found = _first_value(attr)
        if found is None:
            raise Pkcs7Error("pkcs7: attribute type not in attributes")
        return found

    def marshal_authenticated_attributes(self) -> bytes:
        """Encode the authenticated attributes as the SET that is signed."""
        return encode_set(*(_encode_attribute(attr) for attr in self.authenticated_attributes))


@dataclass(frozen=True)
class _RecipientInfo:
    version: int
    issuer_and_serial: IssuerAndSerial
    key_encryption_algorithm: AlgorithmIdentifier
    encrypted_key: bytes


@dataclass(frozen=True)
class _EncryptedContentInfo:
    content_type: str
    algorithm: AlgorithmIdentifier
    encrypted_content: Optional[DerElement]


@dataclass(frozen=True)
class _EnvelopedData:
    version: int
    recipients: list[_RecipientInfo]
    encrypted_content_info: _EncryptedContentInfo


@dataclass
class PKCS7:
    """A parsed PKCS #7 structure."""

    content: bytes = b""
    certificates: list[x509.Certificate] = field(default_factory=list)
    crls: list[bytes] = field(default_factory=list)
    signers: list[SignerInfo] = field(default_factory=list)
    content_type: Optional[str] = None
    _signed: bool = field(default=False, repr=False)
    _enveloped: Optional[_EnvelopedData] = field(default=None, repr=False)

    def verify(self) -> None:
        """Check every signer's signature; signing time and chains are not checked."""
        if not self.signers:
            raise Pkcs7Error("pkcs7: Message has no signers")
        for signer in self.signers:
            _verify_signature(self, signer)

    def get_only_signer(self) -> Optional[x509.Certificate]:
        """Return the certificate of the only signer, or None if there is not exactly one."""
        if len(self.signers) != 1:
            return None
        return _find_certificate(self.certificates, self.signers[0].issuer_and_serial)

    def unmarshal_signed_attribute(self, attribute_type: str) -> DerElement:
        """Return the first signer's first authenticated attribute of the given type."""
        if not self._signed:
            raise Pkcs7Error("pkcs7: payload is not signedData content")
        if not self.signers:
            raise Pkcs7Error("pkcs7: payload has no signers")
        return _unmarshal_attribute(self.signers[0].authenticated_attributes, attribute_type)

    def decrypt(self, cert: x509.Certificate, private_key: object) -> bytes:
        """Decrypt enveloped content for the recipient cert with its RSA private key."""
        data = self._enveloped
        if data is None:
            raise NotEncryptedContentError()
        recipient = next(
            (r for r in data.recipients if _matches(cert, r.issuer_and_serial)), None
        )
        if recipient is None:
            raise Pkcs7Error("pkcs7: no enveloped recipient for provided certificate")
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise UnsupportedAlgorithmError()
        try:
            content_key = private_key.decrypt(recipient.encrypted_key, padding.PKCS1v15())
        except ValueError as exc:
            raise Pkcs7Error(f"pkcs7: {exc}") from exc
        return _decrypt_content(data.encrypted_content_info, content_key)


class _Cursor:
    """Sequential reader over the children of a constructed element."""

    def __init__(self, element: DerElement, what: str) -> None:
        if not element.constructed:
            raise Pkcs7Error(f"pkcs7: {what} is not a constructed value")
        self._items = parse_all(element.content)
        self._pos = 0
        self._what = what

    def peek(self) -> Optional[DerElement]:
        return self._items[self._pos] if self._pos < len(self._items) else None

    def take(self, tag_class: Optional[int] = None, tag: Optional[int] = None) -> DerElement:
        element = self.peek()
        if element is None:
            raise Pkcs7Error(f"pkcs7: {self._what} is truncated")
        if tag is not None and (element.tag_class != tag_class or element.tag != tag):
            raise Pkcs7Error(f"pkcs7: unexpected tag {element.tag} in {self._what}")
        self._pos += 1
        return element

    def take_optional(self, tag_class: int, tag: int) -> Optional[DerElement]:
        element = self.peek()
        if element is not None and element.tag_class == tag_class and element.tag == tag:
            self._pos += 1
            return element
        return None


def _expect_sequence(element: DerElement, what: str) -> _Cursor:
    if element.tag_class != CLASS_UNIVERSAL or element.tag != TAG_SEQUENCE:
        raise Pkcs7Error(f"pkcs7: {what} is not a SEQUENCE")
    return _Cursor(element, what)


def _take_oid(cursor: _Cursor) -> str:
    return decode_oid(cursor.take(CLASS_UNIVERSAL, TAG_OID).content)


def _take_int(cursor: _Cursor) -> int:
    return decode_integer(cursor.take(CLASS_UNIVERSAL, TAG_INTEGER).content)


def _parse_algorithm(element: DerElement) -> AlgorithmIdentifier:
    cursor = _expect_sequence(element, "algorithm identifier")
    algorithm = _take_oid(cursor)
    return AlgorithmIdentifier(algorithm, cursor.peek())


def _parse_issuer_and_serial(element: DerElement) -> IssuerAndSerial:
    cursor = _expect_sequence(element, "issuer and serial")
    issuer = cursor.take()
    return IssuerAndSerial(issuer.encoded, _take_int(cursor))


def _parse_attributes(element: Optional[DerElement]) -> list[SignerAttribute]:
    if element is None:
        return []
    attrs = []
    for item in parse_all(element.content):
        cursor = _expect_sequence(item, "attribute")
        attr_type = _take_oid(cursor)
        value = cursor.take(CLASS_UNIVERSAL, TAG_SET)
        attrs.append(SignerAttribute(attr_type, value.content))
    return attrs


def _parse_signer_info(element: DerElement) -> SignerInfo:
    cursor = _expect_sequence(element, "signer info")
    version_element = cursor.take_optional(CLASS_UNIVERSAL, TAG_INTEGER)
    version = decode_integer(version_element.content) if version_element else 1
    ias = _parse_issuer_and_serial(cursor.take())
    digest_algorithm = _parse_algorithm(cursor.take())
    authenticated = _parse_attributes(cursor.take_optional(CLASS_CONTEXT, 0))
    encryption_algorithm = _parse_algorithm(cursor.take())
    encrypted_digest = cursor.take(CLASS_UNIVERSAL, TAG_OCTET_STRING).content
    unauthenticated = _parse_attributes(cursor.take_optional(CLASS_CONTEXT, 1))
    return SignerInfo(
        version=version,
        issuer_and_serial=ias,
        digest_algorithm=digest_algorithm,
        authenticated_attributes=authenticated,
        digest_encryption_algorithm=encryption_algorithm,
        encrypted_digest=encrypted_digest,
        unauthenticated_attributes=unauthenticated,
    )


def _parse_certificates(element: Optional[DerElement]) -> list[x509.Certificate]:
    if element is None:
        return []
    certs = []
    for item in parse_all(element.content):
        try:
            certs.append(x509.load_der_x509_certificate(item.encoded))
        except ValueError as exc:
            raise Pkcs7Error(f"pkcs7: failed to parse certificate: {exc}") from exc
    return certs


def _parse_signed_data(data: bytes) -> PKCS7:
    element, _ = parse_element(data)
    cursor = _expect_sequence(element, "signed data")
    cursor.take_optional(CLASS_UNIVERSAL, TAG_INTEGER)
    for algorithm in parse_all(cursor.take(CLASS_UNIVERSAL, TAG_SET).content):
        _parse_algorithm(algorithm)
    info = _expect_sequence(cursor.take(), "content info")
    content_type = _take_oid(info)
    explicit = info.take_optional(CLASS_CONTEXT, 0)
    certificates = _parse_certificates(cursor.take_optional(CLASS_CONTEXT, 0))
    crls_element = cursor.take_optional(CLASS_CONTEXT, 1)
    crls = [item.encoded for item in parse_all(crls_element.content)] if crls_element else []
    signers = [
        _parse_signer_info(item)
        for item in parse_all(cursor.take(CLASS_UNIVERSAL, TAG_SET).content)
    ]

    content = b""
    if explicit is not None and explicit.content:
        compound, _ = parse_element(explicit.content)
        if compound.constructed:
            first, _ = parse_element(compound.content)
            if first.tag_class != CLASS_UNIVERSAL or first.tag != TAG_OCTET_STRING:
                raise Pkcs7Error("pkcs7: signed content is not an OCTET STRING")
            content = first.content
        else:
            content = compound.content

    return PKCS7(
        content=content,
        certificates=certificates,
        crls=crls,
        signers=signers,
        content_type=content_type,
        _signed=True,
    )


def _parse_enveloped_data(data: bytes) -> PKCS7:
    element, _ = parse_element(data)
    cursor = _expect_sequence(element, "enveloped data")
    version = _take_int(cursor)
    recipients = []
    for item in parse_all(cursor.take(CLASS_UNIVERSAL, TAG_SET).content):
        info = _expect_sequence(item, "recipient info")
        recipients.append(
            _RecipientInfo(
                version=_take_int(info),
                issuer_and_serial=_parse_issuer_and_serial(info.take()),
                key_encryption_algorithm=_parse_algorithm(info.take()),
                encrypted_key=info.take(CLASS_UNIVERSAL, TAG_OCTET_STRING).content,
            )
        )
    eci = _expect_sequence(cursor.take(), "encrypted content info")
    encrypted = _EncryptedContentInfo(
        content_type=_take_oid(eci),
        algorithm=_parse_algorithm(eci.take()),
        encrypted_content=eci.take_optional(CLASS_CONTEXT, 0),
    )
    return PKCS7(_enveloped=_EnvelopedData(version, recipients, encrypted))


def parse(data: bytes) -> PKCS7:
    """Decode a BER or DER encoded PKCS #7 content info."""
    data = bytes(data)
    if not data:
        raise Pkcs7Error("pkcs7: input data is empty")
    try:
        der = ber_to_der(data)
        info_element, rest = parse_element(der)
        if rest:
            raise Pkcs7Error("asn1: syntax error: trailing data")
        info = _expect_sequence(info_element, "content info")
        content_type = _take_oid(info)
        explicit = info.take_optional(CLASS_CONTEXT, 0)
        inner = explicit.content if explicit is not None else b""
        if content_type == OID_SIGNED_DATA:
            return _parse_signed_data(inner)
        if content_type == OID_ENVELOPED_DATA:
            return _parse_enveloped_data(inner)
    except (DerError, BerError) as exc:
        raise Pkcs7Error(str(exc)) from exc
    raise UnsupportedContentTypeError()


def _raw_issuer(cert: x509.Certificate) -> bytes:
    tbs, _ = parse_element(cert.tbs_certificate_bytes)
    cursor = _Cursor(tbs, "certificate")
    cursor.take_optional(CLASS_CONTEXT, 0)
    cursor.take(CLASS_UNIVERSAL, TAG_INTEGER)
    cursor.take(CLASS_UNIVERSAL, TAG_SEQUENCE)
    return cursor.take().encoded


def _matches(cert: x509.Certificate, ias: IssuerAndSerial) -> bool:
    return cert.serial_number == ias.serial_number and _raw_issuer(cert) == ias.issuer_name


def _find_certificate(
    certs: list[x509.Certificate], ias: IssuerAndSerial
) -> Optional[x509.Certificate]:
    return next((cert for cert in certs if _matches(cert, ias)), None)


def _hash_for_oid(oid: str) -> Callable[[bytes], "hashlib._Hash"]:
    if oid == OID_DIGEST_ALGORITHM_SHA1:
        return hashlib.sha1
    raise UnsupportedAlgorithmError()


def _verify_signature(p7: PKCS7, signer: SignerInfo) -> None:
    signed_data = p7.content
    if signer.authenticated_attributes:
        element = _unmarshal_attribute(signer.authenticated_attributes, OID_ATTRIBUTE_MESSAGE_DIGEST)
        if element.tag_class != CLASS_UNIVERSAL or element.tag != TAG_OCTET_STRING:
            raise Pkcs7Error("pkcs7: message digest attribute is not an OCTET STRING")
        digest = element.content
        computed = _hash_for_oid(signer.digest_algorithm.algorithm)(p7.content).digest()
        if not hmac.compare_digest(digest, computed):
            raise MessageDigestMismatchError(digest, computed)
        signed_data = signer.marshal_authenticated_attributes()

    cert = _find_certificate(p7.certificates, signer.issuer_and_serial)
    if cert is None:
        raise Pkcs7Error("pkcs7: No certificate for signer")
    public_key = cert.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise Pkcs7Error(
            "x509: signature algorithm specifies an RSA public key, but have public key of type "
            + type(public_key).__name__
        )
    try:
        public_key.verify(signer.encrypted_digest, signed_data, padding.PKCS1v15(), hashes.SHA1())
    except InvalidSignature as exc:
        raise Pkcs7Error("pkcs7: RSA verification error") from exc


_KEY_SIZES = {
    OID_ENCRYPTION_ALGORITHM_DES_CBC: (8,),
    OID_ENCRYPTION_ALGORITHM_DES_EDE3_CBC: (24,),
    OID_ENCRYPTION_ALGORITHM_AES256_CBC: (16, 24, 32),
    OID_ENCRYPTION_ALGORITHM_AES128_GCM: (16, 24, 32),
    OID_ENCRYPTION_ALGORITHM_AES128_CBC: (16, 24, 32),
}


def _ciphertext(element: Optional[DerElement]) -> bytes:
    if element is None:
        return b""
    if element.constructed:
        return b"".join(part.content for part in parse_all(element.content))
    return element.content


def _unpad(data: bytes, block_size: int) -> bytes:
    if block_size < 1:
        raise Pkcs7Error(f"invalid blocklen {block_size}")
    if not data or len(data) % block_size:
        raise Pkcs7Error(f"invalid data len {len(data)}")
    pad_len = data[-1]
    if pad_len > len(data):
        raise Pkcs7Error("invalid padding")
    if any(value != pad_len for value in data[len(data) - pad_len:]):
        raise Pkcs7Error("invalid padding")
    return data[:len(data) - pad_len]


def _decrypt_gcm(algorithm: AlgorithmIdentifier, key: bytes, ciphertext: bytes) -> bytes:
    if algorithm.parameters is None:
        raise Pkcs7Error("pkcs7: encryption algorithm parameters are incorrect")
    params, _ = parse_element(algorithm.parameters.content)
    cursor = _expect_sequence(params, "GCM parameters")
    nonce_element = cursor.take()
    if nonce_element.tag != TAG_OCTET_STRING:
        raise Pkcs7Error("pkcs7: encryption algorithm parameters are incorrect")
    icv_len = _take_int(cursor)
    nonce = nonce_element.content
    if len(nonce) != _GCM_NONCE_SIZE or icv_len != _GCM_TAG_SIZE:
        raise Pkcs7Error("pkcs7: encryption algorithm parameters are incorrect")
    if len(ciphertext) < _GCM_TAG_SIZE:
        raise Pkcs7Error("pkcs7: message authentication failed")
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=_GCM_TAG_SIZE)
    try:
        return cipher.decrypt_and_verify(ciphertext[:-_GCM_TAG_SIZE], ciphertext[-_GCM_TAG_SIZE:])
    except ValueError as exc:
        raise Pkcs7Error("pkcs7: message authentication failed") from exc


def _decrypt_content(eci: _EncryptedContentInfo, key: bytes) -> bytes:
    alg = eci.algorithm.algorithm
    if alg not in _KEY_SIZES:
        raise UnsupportedAlgorithmError()
    try:
        ciphertext = _ciphertext(eci.encrypted_content)
        if len(key) not in _KEY_SIZES[alg]:
            raise Pkcs7Error(f"pkcs7: invalid key size {len(key)}")
        if alg == OID_ENCRYPTION_ALGORITHM_AES128_GCM:
            return _decrypt_gcm(eci.algorithm, key, ciphertext)
    except DerError as exc:
        raise Pkcs7Error(str(exc)) from exc

    if alg == OID_ENCRYPTION_ALGORITHM_DES_CBC:
        block_size, factory = DES.block_size, lambda iv: DES.new(key, DES.MODE_CBC, iv=iv)
    elif alg == OID_ENCRYPTION_ALGORITHM_DES_EDE3_CBC:
        block_size, factory = DES3.block_size, lambda iv: DES3.new(key, DES3.MODE_CBC, iv=iv)
    else:
        block_size, factory = AES.block_size, lambda iv: AES.new(key, AES.MODE_CBC, iv=iv)

    params = eci.algorithm.parameters
    iv = params.content if params is not None else b""
    if len(iv) != block_size:
        raise Pkcs7Error("pkcs7: encryption algorithm parameters are malformed")
    if len(ciphertext) % block_size:
        raise Pkcs7Error("pkcs7: ciphertext is not a multiple of the block size")
    try:
        plaintext = factory(iv).decrypt(ciphertext)
    except ValueError as exc:
        raise Pkcs7Error(f"pkcs7: {exc}") from exc
    return _unpad(plaintext, block_size)