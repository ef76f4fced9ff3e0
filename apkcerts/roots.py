"""Discovery and loading of the operating system's trusted root certificates."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import subprocess
import sys
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from cryptography import x509

from .cert_pool import CertPool
from .pem import PemBlock, pem_decode, pem_encode

_log = logging.getLogger(__name__)

SECURITY_TOOL = "/usr/bin/security"

SYSTEM_KEYCHAINS = (
    "/System/Library/Keychains/SystemRootCertificates.keychain",
    "/Library/Keychains/System.keychain",
)

_LINUX_CERT_FILES = [
    "/etc/ssl/certs/ca-certificates.crt",  # Debian/Ubuntu/Gentoo etc.
    "/etc/pki/tls/certs/ca-bundle.crt",  # Fedora/RHEL 6
    "/etc/ssl/ca-bundle.pem",  # OpenSUSE
    "/etc/pki/tls/cacert.pem",  # OpenELEC
    "/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem",  # CentOS/RHEL 7
]

_BSD_CERT_FILES = [
    "/usr/local/etc/ssl/cert.pem",  # FreeBSD
    "/etc/ssl/cert.pem",  # OpenBSD
    "/usr/local/share/certs/ca-root-nss.crt",  # DragonFly
    "/etc/openssl/certs/ca-certificates.crt",  # NetBSD
]

# Possible certificate bundles per platform; loading stops after the first one found.
CERT_FILES: dict[str, list[str]] = {
    "linux": _LINUX_CERT_FILES,
    "freebsd": _BSD_CERT_FILES,
    "openbsd": _BSD_CERT_FILES,
    "netbsd": _BSD_CERT_FILES,
    "dragonfly": _BSD_CERT_FILES,
}

_VERIFY_WORKERS = 4
_HEX_RUN = re.compile(rb"[0-9A-F]+")


def _export_trust_settings(directory: str, name: str, *args: str) -> set[str]:
    path = os.path.join(directory, name)
    command = [SECURITY_TOOL, *args, path]
    try:
        subprocess.run(
            command, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        # Any failure, including "no trust settings were found", means no policy.
        _log.debug("exec %r: %s", command, exc)
        return set()
    with open(path, "rb") as handle:
        data = handle.read()
    return {run.decode("ascii") for run in _HEX_RUN.findall(data) if len(run) == 40}


def get_certs_with_trust_policy() -> set[str]:
    """Return upper-case SHA-1 hex fingerprints of certs with a user-altered trust policy."""
    found: set[str] = set()
    with tempfile.TemporaryDirectory(prefix="x509trustpolicy") as directory:
        for name, args, label in (
            ("user", ("trust-settings-export",), "user"),
            ("admin", ("trust-settings-export", "-d"), "admin"),
        ):
            try:
                found |= _export_trust_settings(directory, name, *args)
            except OSError as exc:
                raise OSError(f"dump-trust-settings ({label}): {exc}") from exc
    return found


def verify_cert_with_system(block: PemBlock, cert: x509.Certificate) -> bool:
    """Ask the system security tool whether cert is trusted."""
    data = pem_encode(block)
    if isinstance(data, str):
        data = data.encode("ascii")
    try:
        handle = tempfile.NamedTemporaryFile(prefix="cert", delete=False)
    except OSError as exc:
        print(f"can't create temporary file for cert: {exc}", file=sys.stderr)
        return False
    try:
        try:
            with handle:
                handle.write(data)
        except OSError as exc:
            print(f"can't write temporary file for cert: {exc}", file=sys.stderr)
            return False
        try:
            result = subprocess.run(
                [SECURITY_TOOL, "verify-cert", "-c", handle.name, "-l", "-L"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            _log.debug("verify-cert could not run: %s", exc)
            return False
    finally:
        try:
            os.remove(handle.name)
        except OSError:
            pass
    if result.returncode != 0:
        _log.debug("verify-cert rejected %s: %r", cert.subject, (result.stderr or b"").strip())
        return False
    _log.debug("verify-cert approved %s", cert.subject)
    return True


def _keychain_arguments() -> list[str]:
    args = ["find-certificate", "-a", "-p", *SYSTEM_KEYCHAINS]
    try:
        home = Path.home()
    except (RuntimeError, KeyError) as exc:
        _log.debug("get current user: %s", exc)
        return args
    args.append(str(home / "Library/Keychains/login.keychain"))
    # Fresh installs use a slightly different path for the login keychain.
    args.append(str(home / "Library/Keychains/login.keychain-db"))
    return args


def exec_security_roots() -> CertPool:
    """Collect trusted root certificates using the system security command-line tool."""
    has_policy = get_certs_with_trust_policy()
    _log.debug("%d certs have a trust policy", len(has_policy))

    command = [SECURITY_TOOL, *_keychain_arguments()]
    try:
        result = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True)
    except subprocess.CalledProcessError as exc:
        raise OSError(f"{SECURITY_TOOL} find-certificate failed: {exc}") from exc

    blocks = []
    rest = result.stdout or b""
    while rest:
        block, rest = pem_decode(rest)
        if block is None:
            break
        if block.type != "CERTIFICATE" or block.headers:
            continue
        blocks.append(block)

    def check(block: PemBlock) -> Optional[x509.Certificate]:
        try:
            cert = x509.load_der_x509_certificate(block.data)
        except ValueError:
            return None
        fingerprint = hashlib.sha1(block.data).hexdigest().upper()
        if fingerprint in has_policy and not verify_cert_with_system(block, cert):
            return None
        return cert

    roots = CertPool()
    with ThreadPoolExecutor(max_workers=_VERIFY_WORKERS) as executor:
        for cert in executor.map(check, blocks):
            if cert is not None:
                roots.add_cert(cert)
    return roots


def _platform_key() -> str:
    return re.sub(r"\d+$", "", sys.platform)


def load_system_roots() -> CertPool:
    """Load the trusted root certificates of the running system."""
    if sys.platform == "darwin":
        return exec_security_roots()
    first_error: Optional[OSError] = None
    for path in CERT_FILES.get(_platform_key(), []):
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            first_error = first_error or exc
            continue
        roots = CertPool()
        roots.append_certs_from_pem(data)
        return roots
    if first_error is not None:
        raise OSError(f"crypto/x509: failed to load system roots: {first_error}") from first_error
    raise OSError("crypto/x509: no system root certificate files known for this platform")


_roots_lock = threading.Lock()
_roots_state: Optional[tuple[Optional[CertPool], Optional[OSError]]] = None


def system_roots_pool() -> Optional[CertPool]:
    """Return the system roots, loaded once; None if loading failed."""
    global _roots_state
    with _roots_lock:
        if _roots_state is None:
            try:
                _roots_state = (load_system_roots(), None)
            except OSError as exc:
                _roots_state = (None, exc)
        return _roots_state[0]


def system_cert_pool() -> CertPool:
    """Return a fresh copy of the system root pool."""
    if sys.platform == "win32":
        raise OSError("crypto/x509: system root pool is not available on Windows")
    return load_system_roots()