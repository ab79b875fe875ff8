"""Transport-text armoring for keys, messages and signatures.

Armored layout:

    -----BEGIN VAULTSHARE <KIND>-----
    <base64 body, 64 columns>
    =<base64 CRC-24 of the body>
    -----END VAULTSHARE <KIND>-----

The checksum is the OpenPGP CRC-24 so that a mangled paste is caught before
any key material is parsed.
"""
import base64
import binascii
from typing import Optional

MESSAGE = "MESSAGE"
SIGNATURE = "SIGNATURE"
PUBLIC_KEY = "PUBLIC KEY"
PRIVATE_KEY = "PRIVATE KEY"

_LINE_WIDTH = 64
_CRC24_INIT = 0xB704CE
_CRC24_POLY = 0x1864CFB


def crc24(data: bytes) -> int:
    crc = _CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= _CRC24_POLY
    return crc & 0xFFFFFF


def _begin(kind: str) -> str:
    return f"-----BEGIN VAULTSHARE {kind}-----"


def _end(kind: str) -> str:
    return f"-----END VAULTSHARE {kind}-----"


def armor(data: bytes, kind: str = MESSAGE) -> str:
    """Return the armored text form of ``data``."""
    body = base64.b64encode(data).decode("ascii")
    lines = [body[i : i + _LINE_WIDTH] for i in range(0, len(body), _LINE_WIDTH)]
    checksum = base64.b64encode(crc24(data).to_bytes(3, "big")).decode("ascii")
    return "\n".join([_begin(kind), *lines, f"={checksum}", _end(kind)]) + "\n"


def unarmor(text: str, kind: Optional[str] = None) -> bytes:
    """Parse armored ``text`` and return the binary payload.

    Raises ValueError on a wrong block kind, bad base64 or checksum mismatch.
    """
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 3:
        raise ValueError("armored block is too short")

    head, tail = lines[0], lines[-1]
    if not (head.startswith("-----BEGIN VAULTSHARE ") and head.endswith("-----")):
        raise ValueError("missing armor header")
    found = head[len("-----BEGIN VAULTSHARE ") : -len("-----")]
    if kind is not None and found != kind:
        raise ValueError(f"unexpected armor kind {found!r}, expected {kind!r}")
    if tail != _end(found):
        raise ValueError("missing armor footer")

    body_lines = lines[1:-1]
    checksum = None
    if body_lines and body_lines[-1].startswith("="):
        checksum = body_lines.pop()[1:]

    try:
        data = base64.b64decode("".join(body_lines), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid armor body: {e}") from e

    if checksum is not None:
        try:
            expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid armor checksum: {e}") from e
        if crc24(data) != expected:
            raise ValueError("armor checksum mismatch")
    return data


def armor_message(data: bytes) -> str:
    return armor(data, MESSAGE)


def unarmor_message(text: str) -> bytes:
    return unarmor(text, MESSAGE)
