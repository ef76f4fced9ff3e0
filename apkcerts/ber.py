"""Transcoding of BER encoded data into DER."""

from __future__ import annotations

from .der import encode_length


class BerError(ValueError):
    """Raised when BER input cannot be transcoded."""


def ber_to_der(ber: bytes) -> bytes:
    """Re-encode the first BER object in ber as DER; trailing data is ignored."""
    ber = bytes(ber)
    if not ber:
        raise BerError("ber2der: input ber is empty")
    try:
        encoded, _ = _read_object(ber, 0)
    except RecursionError:
        raise BerError("ber2der: BER nesting too deep") from None
    return encoded


def _byte(ber: bytes, offset: int) -> int:
    if offset >= len(ber):
        raise BerError("ber2der: BER data is truncated")
    return ber[offset]


def _read_object(ber: bytes, offset: int) -> tuple[bytes, int]:
    tag_start = offset
    first = _byte(ber, offset)
    offset += 1
    if first & 0x1F == 0x1F:
        while _byte(ber, offset) >= 0x80:
            offset += 1
        offset += 1
    tag_bytes = ber[tag_start:offset]
    constructed = bool(first & 0x20)

    length_byte = _byte(ber, offset)
    offset += 1
    length = 0
    indefinite = False
    if length_byte > 0x80:
        count = length_byte & 0x7F
        if count > 4:
            raise BerError("ber2der: BER tag length too long")
        if count == 4 and _byte(ber, offset) > 0x7F:
            raise BerError("ber2der: BER tag length is negative")
        if _byte(ber, offset) == 0:
            offset += 1
            count -= 1
        if offset + count > len(ber):
            raise BerError("ber2der: BER data is truncated")
        length = int.from_bytes(ber[offset:offset + count], "big")
        offset += count
    elif length_byte == 0x80:
        indefinite = True
    else:
        length = length_byte

    content_end = offset + length
    if content_end > len(ber):
        raise BerError("ber2der: BER tag length is more than available data")
    if indefinite and not constructed:
        raise BerError("ber2der: Indefinite form tag must have constructed encoding")

    if not constructed:
        return tag_bytes + encode_length(length) + ber[offset:content_end], content_end

    parts = []
    while offset < content_end or indefinite:
        part, offset = _read_object(ber, offset)
        parts.append(part)
        if indefinite and _is_indefinite_termination(ber, offset):
            break
    inner = b"".join(parts)
    if indefinite:
        content_end = offset + 2
    return tag_bytes + encode_length(len(inner)) + inner, content_end


def _is_indefinite_termination(ber: bytes, offset: int) -> bool:
    if len(ber) - offset < 2:
        raise BerError("ber2der: Invalid BER format")
    return ber[offset:offset + 2] == b"\x00\x00"