# apkcerts

Building blocks for reading and checking the certificates and signatures found in
signed packages such as Android APKs.

## Modules

- `apkcerts.der`: minimal DER encoding and decoding of ASN.1 elements
  (`parse_element`, `parse_all`, `encode_element`, `encode_oid`, `decode_oid`,
  `encode_integer`, `encode_sequence`, `encode_set`, ...). Malformed input raises `DerError`.
- `apkcerts.ber`: `ber_to_der` re-encodes the first BER object of its input as DER,
  resolving indefinite lengths. Bad input raises `BerError`.
- `apkcerts.pem`: `pem_decode` finds the next PEM block and returns it with the remaining
  data; `pem_encode` writes a `PemBlock` back in PEM armour.
- `apkcerts.pem_decrypt`: RFC 1423 password encryption of PEM blocks with DES, 3DES and
  AES-128/192/256 in CBC mode (`PEMCipher`, `encrypt_pem_block`, `decrypt_pem_block`,
  `is_encrypted_pem_block`). A padding check that fails raises `IncorrectPasswordError`.
- `apkcerts.pkcs7`: `parse` reads BER or DER PKCS#7 SignedData and EnvelopedData.
  `PKCS7.verify` checks each signer's RSA signature with SHA-1, and the message digest
  attribute when present. `PKCS7.get_only_signer` returns the signer's certificate.
  `PKCS7.decrypt` opens EnvelopedData encrypted with DES-CBC, DES-EDE3-CBC, AES-CBC or
  AES-128-GCM for an RSA recipient. `SignerInfo` gives access to the signed attributes.
- `apkcerts.pkcs7_build`: `new_signed_data` and `SignedData` (`add_signer`,
  `add_certificate`, `detach`, `finish`) build SignedData signed with RSA and SHA-1.
  `degenerate_certificate` wraps certificates in a certificate-only bundle. `encrypt`
  builds EnvelopedData with DES-CBC or AES-128-GCM (`ContentEncryptionAlgorithm`).
- `apkcerts.pkcs1`: `parse_pkcs1_private_key` and `marshal_pkcs1_private_key` handle RSA
  private keys. Multi-prime keys are rejected.
- `apkcerts.pkcs8`: `parse_pkcs8_private_key` reads unencrypted PKCS#8 RSA or EC keys.
- `apkcerts.cert_pool`: `CertPool`, a set of certificates indexed by subject and subject
  key identifier (`add_cert`, `contains`, `append_certs_from_pem`, `subjects`,
  `find_verified_parents`).
- `apkcerts.certinfo`: `CertInfo` holds the MD5, SHA-1 and SHA-256 fingerprints, the
  validity, subject, issuer, signature algorithm and serial number of a certificate
  (`new_cert_info`, `CertInfo.from_certificate`). `pick_best_apk_cert` chooses the most
  likely signing certificate from a list of chains.
- `apkcerts.roots`: loading of the system's trusted root certificates. `system_cert_pool`
  returns a fresh pool and `system_roots_pool` returns a pool loaded once. On macOS the
  `/usr/bin/security` tool is run; on Linux and the BSDs the first known CA bundle file
  is read. On Windows `system_cert_pool` raises `OSError`.

## Installation

```
pip install .
```

## Examples

Convert BER to DER:

```python
from apkcerts.ber import ber_to_der

der = ber_to_der(bytes([0x30, 0x80, 0x02, 0x01, 0x01, 0x00, 0x00]))
assert der == bytes([0x30, 0x03, 0x02, 0x01, 0x01])
```

Parse and verify a PKCS#7 signature file:

```python
from apkcerts.pkcs7 import parse

with open("CERT.RSA", "rb") as fh:
    p7 = parse(fh.read())
p7.verify()  # raises Pkcs7Error if a signature does not verify
signer_cert = p7.get_only_signer()
```

Sign data and check the result (`cert` is a `cryptography` X.509 certificate and
`key` its RSA private key):

```python
from apkcerts.pkcs7 import parse
from apkcerts.pkcs7_build import new_signed_data

signed = new_signed_data(b"content")
signed.add_signer(cert, key)
parse(signed.finish()).verify()
```

Encrypt a PEM block with a password and read it back:

```python
from apkcerts.pem import pem_decode, pem_encode
from apkcerts.pem_decrypt import PEMCipher, decrypt_pem_block, encrypt_pem_block

password = b"password"
block = encrypt_pem_block(None, "RSA PRIVATE KEY", der_key, password, PEMCipher.AES256)
decoded, rest = pem_decode(pem_encode(block))
assert decrypt_pem_block(decoded, password) == der_key
```

Summarise a set of signer certificate chains:

```python
from apkcerts.certinfo import pick_best_apk_cert

info, cert = pick_best_apk_cert(chains)
if info is not None:
    print(info)
```

## What the package does not do

It does not open APK or ZIP files, read APK signing blocks or manifests, or decide
whether an APK is correctly signed. It offers the certificate, PKCS#7 and PEM pieces
that such a check is built from. There is no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```