"""Encryption and decryption of PEM blocks as described in RFC 1423."""

from __future__ import annotations

import binascii
import enum
import hashlib
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

from Crypto.Cipher import AES, DES, DES3

from .pem import PemBlock


class PEMCipher(enum.IntEnum):
    """Ciphers usable for encrypting a PEM block."""

    DES = 1
    DES3 = 2
    AES128 = 3
    AES192 = 4
    AES256 = 5


class PemDecryptError(ValueError):
    """Raised when a PEM block cannot be encrypted or decrypted."""


class IncorrectPasswordError(PemDecryptError):
    """Raised when the padding shows that the password was wrong."""

    def __init__(self, message: str = "x509: decryption password incorrect") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class _Rfc1423Algo:
    cipher: PEMCipher
    name: str
    new_cbc: Callable[[bytes, bytes], Any]
    key_size: int
    block_size: int

    def derive_key(self, password: bytes, salt: bytes) -> bytes:
        out = b""
        digest = b""
        while len(out) < self.key_size:
            digest = hashlib.md5(digest + password + salt).digest()
            out += digest
        return out[:self.key_size]

    def cbc(self, key: bytes, iv: bytes) -> Any:
        try:
            return self.new_cbc(key, iv)
        except ValueError as exc:
            raise PemDecryptError(f"x509: {exc}") from exc


_ALGOS = (
    _Rfc1423Algo(PEMCipher.DES, "DES-CBC",
                 lambda key, iv: DES.new(key, DES.MODE_CBC, iv=iv), 8, DES.block_size),
    _Rfc1423Algo(PEMCipher.DES3, "DES-EDE3-CBC",
                 lambda key, iv: DES3.new(key, DES3.MODE_CBC, iv=iv), 24, DES3.block_size),
    _Rfc1423Algo(PEMCipher.AES128, "AES-128-CBC",
                 lambda key, iv: AES.new(key, AES.MODE_CBC, iv=iv), 16, AES.block_size),
    _Rfc1423Algo(PEMCipher.AES192, "AES-192-CBC",
                 lambda key, iv: AES.new(key, AES.MODE_CBC, iv=iv), 24, AES.block_size),
    _Rfc1423Algo(PEMCipher.AES256, "AES-256-CBC",
                 lambda key, iv: AES.new(key, AES.MODE_CBC, iv=iv), 32, AES.block_size),
)
_BY_NAME = {algo.name: algo for algo in _ALGOS}
_BY_CIPHER = {algo.cipher: algo for algo in _ALGOS}


def is_encrypted_pem_block(block: PemBlock) -> bool:
    """Report whether the block is password encrypted."""
    return "DEK-Info" in block.headers


def decrypt_pem_block(block: PemBlock, password: bytes) -> bytes:
    """Decrypt a password encrypted PEM block and return the DER bytes.

    A wrong password is not always detectable; then the result is noise.
    """
    dek = block.headers.get("DEK-Info")
    if dek is None:
        raise PemDecryptError("x509: no DEK-Info header in block")
    mode, sep, hex_iv = dek.partition(",")
    if not sep:
        raise PemDecryptError("x509: malformed DEK-Info header")
    algo = _BY_NAME.get(mode)
    if algo is None:
        raise PemDecryptError("x509: unknown encryption mode")
    try:
        iv = binascii.unhexlify(hex_iv)
    except (binascii.Error, ValueError) as exc:
        raise PemDecryptError(f"x509: invalid IV: {exc}") from exc
    if len(iv) != algo.block_size:
        raise PemDecryptError("x509: incorrect IV size")

    key = algo.derive_key(bytes(password), iv[:8])
    cipher = algo.cbc(key, iv)
    if len(block.data) % algo.block_size:
        raise PemDecryptError("x509: encrypted PEM data is not a multiple of the block size")
    data = cipher.decrypt(block.data)

    if not data or len(data) % algo.block_size:
        raise PemDecryptError("x509: invalid padding")
    last = data[-1]
    if len(data) < last or last == 0 or last > algo.block_size:
        raise IncorrectPasswordError()
    if any(value != last for value in data[-last:]):
        raise IncorrectPasswordError()
    return data[:-last]


def encrypt_pem_block(
    rand: Optional[Callable[[int], bytes]],
    block_type: str,
    data: bytes,
    password: bytes,
    alg: PEMCipher,
) -> PemBlock:
    """Encrypt DER data with a password into a PEM block of the given type.

    rand returns the requested number of random bytes; None means os.urandom.
    """
    algo = _BY_CIPHER.get(alg)
    if algo is None:
        raise PemDecryptError("x509: unknown encryption mode")
    source = rand or os.urandom
    try:
        iv = bytes(source(algo.block_size))
    except OSError as exc:
        raise PemDecryptError(f"x509: cannot generate IV: {exc}") from exc
    if len(iv) != algo.block_size:
        raise PemDecryptError("x509: cannot generate IV: short read")

    key = algo.derive_key(bytes(password), iv[:8])
    cipher = algo.cbc(key, iv)
    pad = algo.block_size - len(data) % algo.block_size
    encrypted = cipher.encrypt(bytes(data) + bytes([pad]) * pad)
    return PemBlock(
        type=block_type,
        data=encrypted,
        headers={
            "Proc-Type": "4,ENCRYPTED",
            "DEK-Info": f"{algo.name},{iv.hex().upper()}",
        },
    )