"""PEM armour decoding and encoding."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Optional

_BEGIN = re.compile(rb"(?:^|\n)-----BEGIN ([^\r\n]*?)-----[ \t]*\r?\n")
_LINE_END = re.compile(rb"[ \t]*(?:\r?\n|$)")
_LINE_WIDTH = 64


@dataclass
class PemBlock:
    """A decoded PEM block: its type, optional headers and binary payload."""

    type: str
    data: bytes
    headers: dict[str, str] = field(default_factory=dict)


def _parse_body(body: bytes) -> tuple[dict[str, str], bytes]:
    lines = [line.rstrip(b"\r") for line in body.split(b"\n")]
    headers: dict[str, str] = {}
    while lines and b":" in lines[0]:
        key, _, value = lines.pop(0).partition(b":")
        headers[key.strip().decode("latin-1")] = value.strip().decode("latin-1")
    if headers and lines and not lines[0].strip():
        lines.pop(0)
    payload = b"".join(b"".join(line.split()) for line in lines)
    return headers, base64.b64decode(payload, validate=True)


def pem_decode(data: bytes) -> tuple[Optional[PemBlock], bytes]:
    """Find the next PEM block in data; return it and the data after it.

    If no valid block is found, return None and the whole input.
    """
    data = bytes(data)
    pos = 0
    while True:
        match = _BEGIN.search(data, pos)
        if match is None:
            return None, data
        pos = match.start() + 1
        raw_type = match.group(1)
        body_start = match.end()
        end_line = b"-----END " + raw_type + b"-----"
        idx = data.find(b"\n" + end_line, body_start - 1)
        if idx < 0:
            continue
        body = data[body_start:idx + 1] if idx + 1 > body_start else b""
        try:
            headers, payload = _parse_body(body)
        except (binascii.Error, ValueError):
            continue
        after = idx + 1 + len(end_line)
        tail = _LINE_END.match(data, after)
        rest = data[tail.end():] if tail else data[after:]
        return PemBlock(raw_type.decode("latin-1"), payload, headers), rest


def pem_encode(block: PemBlock) -> bytes:
    """Encode a block in PEM armour, Proc-Type header first, others sorted."""
    for key in block.headers:
        if ":" in key:
            raise ValueError(f"pem: cannot encode a header key that contains a colon: {key!r}")
    out = [f"-----BEGIN {block.type}-----\n"]
    if block.headers:
        keys = sorted(key for key in block.headers if key != "Proc-Type")
        if "Proc-Type" in block.headers:
            keys.insert(0, "Proc-Type")
        out.extend(f"{key}: {block.headers[key]}\n" for key in keys)
        out.append("\n")
    encoded = base64.b64encode(block.data).decode("ascii")
    out.extend(
        encoded[start:start + _LINE_WIDTH] + "\n" for start in range(0, len(encoded), _LINE_WIDTH)
    )
    out.append(f"-----END {block.type}-----\n")
    return "".join(out).encode("latin-1")