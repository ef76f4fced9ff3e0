import datetime
import hashlib

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from apkcerts.certinfo import CertInfo, new_cert_info, pick_best_apk_cert

UTC = datetime.timezone.utc
DEBUG_NAME = x509.Name(
    [
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Android"),
        x509.NameAttribute(NameOID.COMMON_NAME, "Android Debug"),
    ]
)
NOT_BEFORE = datetime.datetime(2015, 8, 5, 8, 1, 53, tzinfo=UTC)
NOT_AFTER = datetime.datetime(2045, 7, 28, 8, 1, 53, tzinfo=UTC)


def _cert(key, serial=1234, name=DEBUG_NAME):
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="module")
def rsa_cert():
    return _cert(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="module")
def ec_cert():
    return _cert(ec.generate_private_key(ec.SECP256R1()), serial=99)


def test_fingerprints(rsa_cert):
    raw = rsa_cert.public_bytes(serialization.Encoding.DER)
    info = CertInfo.from_certificate(rsa_cert)
    assert info.md5 == hashlib.md5(raw).hexdigest()
    assert info.sha1 == hashlib.sha1(raw).hexdigest()
    assert info.sha256 == hashlib.sha256(raw).hexdigest()


def test_names_and_serial(rsa_cert):
    info = new_cert_info(rsa_cert)
    assert info.subject == "C=US, O=Android, CN=Android Debug"
    assert info.issuer == info.subject
    assert info.serial_number == 1234
    assert info.valid_from == NOT_BEFORE
    assert info.valid_to == NOT_AFTER


def test_signature_algorithm_names(rsa_cert, ec_cert):
    assert new_cert_info(rsa_cert).signature_algorithm == "SHA256-RSA"
    assert new_cert_info(ec_cert).signature_algorithm == "ECDSA-SHA256"


def test_string(rsa_cert):
    info = new_cert_info(rsa_cert)
    assert str(info) == (
        f"Cert {info.sha1}, valid from 2015-08-05T08:01:53Z to 2045-07-28T08:01:53Z, "
        "Subject: C=US, O=Android, CN=Android Debug, Issuer: C=US, O=Android, CN=Android Debug"
    )


def test_pick_best_empty():
    assert pick_best_apk_cert([]) == (None, None)


def test_pick_best_prefers_higher_algorithm(rsa_cert, ec_cert):
    chains = [[rsa_cert], [ec_cert]]
    info, cert = pick_best_apk_cert(chains)
    assert cert == ec_cert
    assert info == new_cert_info(ec_cert)
    assert chains == [[rsa_cert], [ec_cert]]


def test_pick_best_single_chain_uses_head(rsa_cert, ec_cert):
    info, cert = pick_best_apk_cert([[rsa_cert, ec_cert]])
    assert cert == rsa_cert
    assert info.sha256 == new_cert_info(rsa_cert).sha256


def test_pick_best_equal_keeps_first(rsa_cert):
    other = _cert(rsa.generate_private_key(public_exponent=65537, key_size=2048), serial=7)
    _, cert = pick_best_apk_cert([[other], [rsa_cert]])
    assert cert == other