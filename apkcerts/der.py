"""Minimal DER (Distinguished Encoding Rules) encoding and decoding primitives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

CLASS_UNIVERSAL = 0
CLASS_APPLICATION = 1
CLASS_CONTEXT = 2
CLASS_PRIVATE = 3

TAG_BOOLEAN = 1
TAG_INTEGER = 2
TAG_BIT_STRING = 3
TAG_OCTET_STRING = 4
TAG_NULL = 5
TAG_OID = 6
TAG_UTF8_STRING = 12
TAG_SEQUENCE = 16
TAG_SET = 17
TAG_PRINTABLE_STRING = 19
TAG_UTC_TIME = 23
TAG_GENERALIZED_TIME = 24


class DerError(ValueError):
    """Raised when DER data is malformed or a value cannot be encoded."""


@dataclass(frozen=True)
class DerElement:
    """One decoded TLV element: its tag, its content and its full encoding."""

    tag_class: int
    constructed: bool
    tag: int
    content: bytes
    encoded: bytes


def _base128(value: int) -> bytes:
    groups = [value & 0x7F]
    value >>= 7
    while value:
        groups.append(0x80 | (value & 0x7F))
        value >>= 7
    return bytes(reversed(groups))


def encode_length(length: int) -> bytes:
    """Encode a length in DER form: short form below 128, long form otherwise."""
    if length < 0:
        raise DerError(f"der: negative length {length}")
    if length < 128:
        return bytes([length])
    size = (length.bit_length() + 7) // 8
    return bytes([0x80 | size]) + length.to_bytes(size, "big")


def encode_element(tag_class: int, tag: int, constructed: bool, content: bytes) -> bytes:
    """Encode a complete TLV element."""
    if tag_class not in (CLASS_UNIVERSAL, CLASS_APPLICATION, CLASS_CONTEXT, CLASS_PRIVATE):
        raise DerError(f"der: invalid tag class {tag_class}")
    if tag < 0:
        raise DerError(f"der: invalid tag {tag}")
    first = (tag_class << 6) | (0x20 if constructed else 0)
    if tag < 0x1F:
        header = bytes([first | tag])
    else:
        header = bytes([first | 0x1F]) + _base128(tag)
    content = bytes(content)
    return header + encode_length(len(content)) + content


def parse_element(data: bytes) -> tuple[DerElement, bytes]:
    """Parse one element from the start of data; return it and the remaining bytes."""
    data = bytes(data)
    if not data:
        raise DerError("der: empty input")
    first = data[0]
    pos = 1
    tag = first & 0x1F
    if tag == 0x1F:
        tag = 0
        while True:
            if pos >= len(data):
                raise DerError("der: truncated tag")
            octet = data[pos]
            pos += 1
            tag = (tag << 7) | (octet & 0x7F)
            if not octet & 0x80:
                break
    if pos >= len(data):
        raise DerError("der: truncated length")
    length_byte = data[pos]
    pos += 1
    if length_byte == 0x80:
        raise DerError("der: indefinite length not allowed")
    if length_byte & 0x80:
        count = length_byte & 0x7F
        if pos + count > len(data):
            raise DerError("der: truncated length")
        length = int.from_bytes(data[pos:pos + count], "big")
        pos += count
    else:
        length = length_byte
    end = pos + length
    if end > len(data):
        raise DerError("der: content longer than available data")
    element = DerElement(
        tag_class=first >> 6,
        constructed=bool(first & 0x20),
        tag=tag,
        content=data[pos:end],
        encoded=data[:end],
    )
    return element, data[end:]


def parse_all(data: bytes) -> list[DerElement]:
    """Parse consecutive elements until data is exhausted."""
    elements = []
    rest = bytes(data)
    while rest:
        element, rest = parse_element(rest)
        elements.append(element)
    return elements


def encode_oid(oid: Union[str, Iterable[int]]) -> bytes:
    """Encode an object identifier, given dotted or as integers, as a full element."""
    if isinstance(oid, str):
        try:
            parts = [int(part) for part in oid.split(".")]
        except ValueError as exc:
            raise DerError(f"der: invalid object identifier {oid!r}") from exc
    else:
        parts = [int(part) for part in oid]
    if len(parts) < 2 or any(part < 0 for part in parts):
        raise DerError(f"der: invalid object identifier {oid!r}")
    first, second = parts[0], parts[1]
    if first > 2 or (first < 2 and second >= 40):
        raise DerError(f"der: invalid object identifier {oid!r}")
    body = _base128(first * 40 + second) + b"".join(_base128(part) for part in parts[2:])
    return encode_element(CLASS_UNIVERSAL, TAG_OID, False, body)


def decode_oid(content: bytes) -> str:
    """Decode object identifier content octets to dotted form."""
    if not content:
        raise DerError("der: empty object identifier")
    values = []
    current = 0
    pending = False
    for octet in content:
        current = (current << 7) | (octet & 0x7F)
        pending = bool(octet & 0x80)
        if not pending:
            values.append(current)
            current = 0
    if pending:
        raise DerError("der: truncated object identifier")
    head = values[0]
    if head < 40:
        arcs = [0, head]
    elif head < 80:
        arcs = [1, head - 40]
    else:
        arcs = [2, head - 80]
    return ".".join(str(arc) for arc in arcs + values[1:])


def encode_integer(value: int) -> bytes:
    """Encode an integer in minimal two's complement form as a full element."""
    magnitude = value if value >= 0 else ~value
    size = max(1, (magnitude.bit_length() + 8) // 8)
    return encode_element(CLASS_UNIVERSAL, TAG_INTEGER, False, value.to_bytes(size, "big", signed=True))


def decode_integer(content: bytes) -> int:
    """Decode two's complement integer content octets."""
    if not content:
        raise DerError("der: empty integer")
    return int.from_bytes(content, "big", signed=True)


def encode_octet_string(data: bytes) -> bytes:
    """Encode bytes as an OCTET STRING element."""
    return encode_element(CLASS_UNIVERSAL, TAG_OCTET_STRING, False, data)


def encode_sequence(*args: bytes) -> bytes:
    """Wrap already encoded elements in a SEQUENCE, in the given order."""
    return encode_element(CLASS_UNIVERSAL, TAG_SEQUENCE, True, b"".join(args))


def encode_set(*args: bytes) -> bytes:
    """Wrap already encoded elements in a SET, in the given order."""
    return encode_element(CLASS_UNIVERSAL, TAG_SET, True, b"".join(args))