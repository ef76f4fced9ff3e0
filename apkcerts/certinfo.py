"""Readable summaries of certificates and choice of the best signing certificate."""

from __future__ import annotations

import datetime
import functools
import hashlib
from dataclasses import dataclass
from typing import Optional, Sequence

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

_OID_RSA_PSS = "1.2.840.113549.1.1.10"

_ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.2": "MD2-RSA",
    "1.2.840.113549.1.1.4": "MD5-RSA",
    "1.2.840.113549.1.1.5": "SHA1-RSA",
    "1.2.840.113549.1.1.11": "SHA256-RSA",
    "1.2.840.113549.1.1.12": "SHA384-RSA",
    "1.2.840.113549.1.1.13": "SHA512-RSA",
    "1.2.840.10040.4.3": "DSA-SHA1",
    "2.16.840.1.101.3.4.3.2": "DSA-SHA256",
    "1.2.840.10045.4.1": "ECDSA-SHA1",
    "1.2.840.10045.4.3.2": "ECDSA-SHA256",
    "1.2.840.10045.4.3.3": "ECDSA-SHA384",
    "1.2.840.10045.4.3.4": "ECDSA-SHA512",
    "1.3.101.112": "Ed25519",
}
_PSS_NAMES = {
    "sha256": "SHA256-RSAPSS",
    "sha384": "SHA384-RSAPSS",
    "sha512": "SHA512-RSAPSS",
}
# Preference order of signature algorithms; later entries are preferred.
_RANKS = {
    name: rank
    for rank, name in enumerate(
        (
            "MD2-RSA", "MD5-RSA", "SHA1-RSA", "SHA256-RSA", "SHA384-RSA", "SHA512-RSA",
            "DSA-SHA1", "DSA-SHA256", "ECDSA-SHA1", "ECDSA-SHA256", "ECDSA-SHA384",
            "ECDSA-SHA512", "SHA256-RSAPSS", "SHA384-RSAPSS", "SHA512-RSAPSS", "Ed25519",
        ),
        start=1,
    )
}
_UNKNOWN_ALGORITHM = "0"


def _signature_algorithm(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid.dotted_string
    if oid == _OID_RSA_PSS:
        try:
            hash_algorithm = cert.signature_hash_algorithm
        except UnsupportedAlgorithm:
            return _UNKNOWN_ALGORITHM
        name = hash_algorithm.name if hash_algorithm is not None else ""
        return _PSS_NAMES.get(name, _UNKNOWN_ALGORITHM)
    return _ALGORITHM_NAMES.get(oid, _UNKNOWN_ALGORITHM)


def _not_before(cert: x509.Certificate) -> datetime.datetime:
    value = getattr(cert, "not_valid_before_utc", None)
    if value is None:
        value = cert.not_valid_before.replace(tzinfo=datetime.timezone.utc)
    return value


def _not_after(cert: x509.Certificate) -> datetime.datetime:
    value = getattr(cert, "not_valid_after_utc", None)
    if value is None:
        value = cert.not_valid_after.replace(tzinfo=datetime.timezone.utc)
    return value


def _name_to_string(name: x509.Name) -> str:
    parts = []
    for rdn in name.rdns:
        for attr in rdn:
            value = attr.value if isinstance(attr.value, str) else bytes(attr.value).hex()
            parts.append(f"{attr.rfc4514_attribute_name}={value}")
    return ", ".join(parts)


def _rfc3339(value: datetime.datetime) -> str:
    return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


@dataclass
class CertInfo:
    """Fingerprints, validity, names and algorithm of a certificate."""

    md5: str
    sha1: str
    sha256: str
    valid_from: datetime.datetime
    valid_to: datetime.datetime
    issuer: str
    subject: str
    signature_algorithm: str
    serial_number: int

    @classmethod
    def from_certificate(cls, cert: x509.Certificate) -> "CertInfo":
        """Collect the information from a certificate."""
        raw = _der(cert)
        return cls(
            md5=hashlib.md5(raw).hexdigest(),
            sha1=hashlib.sha1(raw).hexdigest(),
            sha256=hashlib.sha256(raw).hexdigest(),
            valid_from=_not_before(cert),
            valid_to=_not_after(cert),
            issuer=_name_to_string(cert.issuer),
            subject=_name_to_string(cert.subject),
            signature_algorithm=_signature_algorithm(cert),
            serial_number=cert.serial_number,
        )

    def __str__(self) -> str:
        return (
            f"Cert {self.sha1}, valid from {_rfc3339(self.valid_from)} "
            f"to {_rfc3339(self.valid_to)}, Subject: {self.subject}, Issuer: {self.issuer}"
        )


def new_cert_info(cert: x509.Certificate) -> CertInfo:
    """Return a CertInfo describing cert."""
    return CertInfo.from_certificate(cert)


def _less(ci: x509.Certificate, cj: x509.Certificate, now: datetime.datetime) -> bool:
    rank_i = _RANKS.get(_signature_algorithm(ci), 0)
    rank_j = _RANKS.get(_signature_algorithm(cj), 0)
    if rank_i != rank_j:
        return rank_i > rank_j

    before_i, after_i = _not_before(ci), _not_after(ci)
    before_j, after_j = _not_before(cj), _not_after(cj)
    if after_i > now or before_i < now:
        return False
    if after_j > now or before_j < now:
        return True
    if before_i != before_j:
        return before_i > before_j
    if after_i != after_j:
        return (after_i - before_i) > (after_j - before_j)
    return _der(ci) > _der(cj)


def pick_best_apk_cert(
    chains: Sequence[Sequence[x509.Certificate]],
) -> tuple[Optional[CertInfo], Optional[x509.Certificate]]:
    """Pick the most likely signing certificate from the chains found in an APK."""
    heads = [chain[0] for chain in chains if chain]
    if not heads:
        return None, None
    now = datetime.datetime.now(datetime.timezone.utc)

    def compare(a: x509.Certificate, b: x509.Certificate) -> int:
        if _less(a, b, now):
            return -1
        if _less(b, a, now):
            return 1
        return 0

    best = sorted(heads, key=functools.cmp_to_key(compare))[0]
    return new_cert_info(best), best