[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "apkcerts"
version = "0.1.0"
description = "PKCS#7, BER/DER, PEM and X.509 certificate helpers for inspecting signed packages"
requires-python = ">=3.10"
keywords = ["pkcs7", "asn1", "ber", "der", "pem", "x509", "certificates", "apk"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "pycryptodome",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["apkcerts"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
