"""A set of X.509 certificates indexed by subject and key identifier."""

from __future__ import annotations

from typing import Iterator, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .der import CLASS_CONTEXT, parse_all, parse_element
from .pem import pem_decode

_CANNOT_SIGN = "x509: invalid signature: parent certificate cannot sign this kind of certificate"


def _tbs_fields(cert: x509.Certificate):
    tbs, _ = parse_element(cert.tbs_certificate_bytes)
    items = parse_all(tbs.content)
    if items and items[0].tag_class == CLASS_CONTEXT and items[0].tag == 0:
        items = items[1:]
    if len(items) < 5:
        raise ValueError("x509: malformed tbs certificate")
    return items


def _raw_issuer(cert: x509.Certificate) -> bytes:
    return _tbs_fields(cert)[2].encoded


def _raw_subject(cert: x509.Certificate) -> bytes:
    return _tbs_fields(cert)[4].encoded


def _extension(cert: x509.Certificate, kind):
    try:
        return cert.extensions.get_extension_for_class(kind).value
    except x509.ExtensionNotFound:
        return None


def _subject_key_id(cert: x509.Certificate) -> bytes:
    try:
        ski = _extension(cert, x509.SubjectKeyIdentifier)
    except ValueError:
        return b""
    return ski.digest if ski is not None else b""


def _authority_key_id(cert: x509.Certificate) -> bytes:
    try:
        aki = _extension(cert, x509.AuthorityKeyIdentifier)
    except ValueError:
        return b""
    return (aki.key_identifier or b"") if aki is not None else b""


def _check_signature_from(cert: x509.Certificate, parent: x509.Certificate) -> Optional[ValueError]:
    try:
        constraints = _extension(parent, x509.BasicConstraints)
        usage = _extension(parent, x509.KeyUsage)
    except ValueError as exc:
        return exc
    if (constraints is None and parent.version is x509.Version.v3) or (
        constraints is not None and not constraints.ca
    ):
        return ValueError(_CANNOT_SIGN)
    if usage is not None and not usage.key_cert_sign:
        return ValueError(_CANNOT_SIGN)
    try:
        cert.verify_directly_issued_by(parent)
    except InvalidSignature:
        return ValueError("x509: signature verification failed")
    except (ValueError, TypeError) as exc:
        return ValueError(f"x509: {exc}")
    return None


class CertPool:
    """A set of certificates."""

    def __init__(self) -> None:
        self._by_subject_key_id: dict[bytes, list[int]] = {}
        self._by_name: dict[bytes, list[int]] = {}
        self._certs: list[x509.Certificate] = []

    def __len__(self) -> int:
        return len(self._certs)

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(self._certs)

    def __contains__(self, cert: object) -> bool:
        return isinstance(cert, x509.Certificate) and self.contains(cert)

    def find_verified_parents(
        self, cert: x509.Certificate
    ) -> tuple[list[x509.Certificate], Optional[x509.Certificate], Optional[ValueError]]:
        """Find pool certificates that signed cert.

        Returns the verified parents, one rejected candidate (if any) and the
        error from the last candidate checked.
        """
        candidates: list[int] = []
        authority_key_id = _authority_key_id(cert)
        if authority_key_id:
            candidates = self._by_subject_key_id.get(authority_key_id, [])
        if not candidates:
            candidates = self._by_name.get(_raw_issuer(cert), [])

        parents: list[x509.Certificate] = []
        err_cert: Optional[x509.Certificate] = None
        err: Optional[ValueError] = None
        for index in candidates:
            candidate = self._certs[index]
            err = _check_signature_from(cert, candidate)
            if err is None:
                parents.append(candidate)
            else:
                err_cert = candidate
        return parents, err_cert, err

    def contains(self, cert: x509.Certificate) -> bool:
        """Report whether an identical certificate is in the pool."""
        return any(
            self._certs[index] == cert for index in self._by_name.get(_raw_subject(cert), [])
        )

    def add_cert(self, cert: x509.Certificate) -> None:
        """Add a certificate to the pool unless it is already there."""
        if cert is None:
            raise TypeError("adding None certificate to CertPool")
        if self.contains(cert):
            return
        index = len(self._certs)
        self._certs.append(cert)
        key_id = _subject_key_id(cert)
        if key_id:
            self._by_subject_key_id.setdefault(key_id, []).append(index)
        self._by_name.setdefault(_raw_subject(cert), []).append(index)

    def append_certs_from_pem(self, pem_certs: bytes) -> bool:
        """Add every PEM certificate found; report whether any was added."""
        added = False
        rest = bytes(pem_certs)
        while rest:
            block, rest = pem_decode(rest)
            if block is None:
                break
            if block.type != "CERTIFICATE" or block.headers:
                continue
            try:
                cert = x509.load_der_x509_certificate(block.data)
            except ValueError:
                continue
            self.add_cert(cert)
            added = True
        return added

    def subjects(self) -> list[bytes]:
        """Return the DER encoded subjects of all certificates in the pool."""
        return [_raw_subject(cert) for cert in self._certs]