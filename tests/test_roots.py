import datetime
import hashlib
import os
import subprocess
from unittest import mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from apkcerts import roots
from apkcerts.pem import pem_decode


def _make_cert(name):
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )


def _pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def _sha1_upper(cert):
    return hashlib.sha1(cert.public_bytes(serialization.Encoding.DER)).hexdigest().upper()


def _done(cmd, code=0, stdout=b""):
    return subprocess.CompletedProcess(cmd, code, stdout=stdout, stderr=b"")


def test_trust_policy_collects_runs_of_forty_hex_chars():
    good = "0123456789ABCDEF0123456789ABCDEF01234567"
    short = "0123456789ABCDEF0123456789ABCDEF0123456"
    content = f"<key>{good}</key><key>{short}</key><k>{good.lower()}</k>".encode()

    def fake_run(cmd, **kwargs):
        with open(cmd[-1], "wb") as handle:
            handle.write(content)
        return _done(cmd)

    with mock.patch("apkcerts.roots.subprocess.run", side_effect=fake_run):
        assert roots.get_certs_with_trust_policy() == {good}


def test_trust_policy_failure_means_no_policy():
    def fake_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    with mock.patch("apkcerts.roots.subprocess.run", side_effect=fake_run):
        assert roots.get_certs_with_trust_policy() == set()


@pytest.mark.parametrize("code, expected", [(0, True), (1, False)])
def test_verify_cert_with_system(code, expected):
    cert = _make_cert("verify")
    block, _ = pem_decode(_pem(cert))
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        with open(cmd[3], "rb") as handle:
            seen["data"] = handle.read()
        return _done(cmd, code)

    with mock.patch("apkcerts.roots.subprocess.run", side_effect=fake_run):
        assert roots.verify_cert_with_system(block, cert) is expected
    assert seen["cmd"][:3] == ["/usr/bin/security", "verify-cert", "-c"]
    assert seen["cmd"][4:] == ["-l", "-L"]
    assert x509.load_pem_x509_certificate(seen["data"]) == cert
    assert not os.path.exists(seen["cmd"][3])


def test_exec_security_roots_drops_certs_rejected_by_system():
    trusted = _make_cert("trusted")
    distrusted = _make_cert("distrusted")
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[1] == "trust-settings-export":
            with open(cmd[-1], "wb") as handle:
                handle.write(f"<{_sha1_upper(distrusted)}>".encode())
            return _done(cmd)
        if cmd[1] == "find-certificate":
            return _done(cmd, stdout=_pem(trusted) + _pem(distrusted))
        if cmd[1] == "verify-cert":
            return _done(cmd, 1)
        raise AssertionError(cmd)

    with mock.patch("apkcerts.roots.subprocess.run", side_effect=fake_run):
        pool = roots.exec_security_roots()

    assert len(pool) == 1
    assert pool.contains(trusted)
    assert not pool.contains(distrusted)
    find = next(cmd for cmd in calls if cmd[1] == "find-certificate")
    assert "/System/Library/Keychains/SystemRootCertificates.keychain" in find
    assert sum(1 for cmd in calls if cmd[1] == "verify-cert") == 1


def test_exec_security_roots_reports_find_certificate_failure():
    def fake_run(cmd, **kwargs):
        if cmd[1] == "find-certificate":
            raise subprocess.CalledProcessError(1, cmd)
        return _done(cmd, 1) if cmd[1] != "trust-settings-export" else _fail(cmd)

    def _fail(cmd):
        raise subprocess.CalledProcessError(1, cmd)

    with mock.patch("apkcerts.roots.subprocess.run", side_effect=fake_run):
        with pytest.raises(OSError):
            roots.exec_security_roots()


def test_load_system_roots_uses_first_existing_file(tmp_path):
    cert = _make_cert("bundle")
    bundle = tmp_path / "bundle.pem"
    bundle.write_bytes(_pem(cert))
    paths = [str(tmp_path / "missing.pem"), str(bundle)]
    with mock.patch("apkcerts.roots.sys.platform", "linux"), mock.patch.dict(
        roots.CERT_FILES, {"linux": paths}
    ):
        pool = roots.load_system_roots()
    assert len(pool) == 1
    assert pool.contains(cert)


def test_load_system_roots_without_files_raises(tmp_path):
    with mock.patch("apkcerts.roots.sys.platform", "linux"), mock.patch.dict(
        roots.CERT_FILES, {"linux": [str(tmp_path / "absent.pem")]}
    ):
        with pytest.raises(OSError):
            roots.load_system_roots()


def test_bsd_platform_uses_bsd_file_list(tmp_path):
    cert = _make_cert("bsd")
    bundle = tmp_path / "cert.pem"
    bundle.write_bytes(_pem(cert))
    with mock.patch("apkcerts.roots.sys.platform", "freebsd13"), mock.patch.dict(
        roots.CERT_FILES, {"freebsd": [str(bundle)]}
    ):
        pool = roots.load_system_roots()
    assert list(pool) == [cert]


def test_openbsd_platform_loads_from_openbsd_list(tmp_path):
    assert roots.CERT_FILES["linux"][0] == "/etc/ssl/certs/ca-certificates.crt"
    assert "/etc/ssl/cert.pem" in roots.CERT_FILES["openbsd"]
    cert = _make_cert("openbsd")
    bundle = tmp_path / "cert.pem"
    bundle.write_bytes(_pem(cert))
    with mock.patch("apkcerts.roots.sys.platform", "openbsd7"), mock.patch.dict(
        roots.CERT_FILES, {"openbsd": [str(tmp_path / "absent.pem"), str(bundle)]}
    ):
        pool = roots.load_system_roots()
    assert list(pool) == [cert]


def test_system_cert_pool_unavailable_on_windows():
    with mock.patch("apkcerts.roots.sys.platform", "win32"):
        with pytest.raises(OSError, match="not available on Windows"):
            roots.system_cert_pool()


def test_system_cert_pool_returns_fresh_pool(tmp_path):
    cert = _make_cert("fresh")
    bundle = tmp_path / "bundle.pem"
    bundle.write_bytes(_pem(cert))
    with mock.patch("apkcerts.roots.sys.platform", "linux"), mock.patch.dict(
        roots.CERT_FILES, {"linux": [str(bundle)]}
    ):
        first = roots.system_cert_pool()
        second = roots.system_cert_pool()
    assert first is not second
    assert list(first) == list(second) == [cert]


def test_system_roots_pool_is_loaded_once():
    first = roots.system_roots_pool()
    second = roots.system_roots_pool()
    assert first is second