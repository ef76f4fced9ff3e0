"""BER/DER, PEM, PKCS#7, private key and X.509 certificate helpers for signed packages."""

__version__ = "0.1.0"

__all__ = [
    "ber",
    "cert_pool",
    "certinfo",
    "der",
    "pem",
    "pem_decrypt",
    "pkcs1",
    "pkcs7",
    "pkcs7_build",
    "pkcs8",
    "roots",
]