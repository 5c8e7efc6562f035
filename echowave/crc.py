"""CRC-8 used to protect every message on the wire."""

from __future__ import annotations

from .constants import CRC8_INIT, CRC8_POLY


def crc8(data: bytes, poly: int = CRC8_POLY, init: int = CRC8_INIT) -> int:
    """Compute a non-reflected CRC-8 over ``data``.

    With the default polynomial (0x07) and initial value (0x00) this is
    CRC-8/SMBUS, whose check value for ``b"123456789"`` is ``0xF4``.
    """
    crc = init
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = ((crc << 1) ^ poly) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
    return crc
