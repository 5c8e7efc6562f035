"""Codec for the 16-byte RC code payload.

Layout (all multi-byte fields little-endian)::

    +--------+--------+--------+-------------+-------------+-------+-------+----------+
    |  code  | length | repeat | pulseLength | syncFactor  |  one  | zero  | inverted |
    | 4 byte | 2 byte | 1 byte |   2 byte    |   2 byte    | 2 byte| 2 byte|  1 byte  |
    +--------+--------+--------+-------------+-------------+-------+-------+----------+
"""

from __future__ import annotations

import struct

from .constants import PAYLOAD_SIZE
from .exceptions import ShortBufferError
from .types import RcCodeData

_RC_STRUCT = struct.Struct("<IHBHHHHB")


def encode_rc_data(data: RcCodeData) -> bytes:
    """Pack ``data`` into its 16-byte wire form.

    Raises:
        ValueError: If a field does not fit its wire width.
    """
    try:
        return _RC_STRUCT.pack(
            data.code,
            data.length,
            data.repeat,
            data.pulse_length,
            data.sync_factor,
            data.one,
            data.zero,
            1 if data.inverted else 0,
        )
    except struct.error as exc:
        raise ValueError(f"RC code field out of range: {data}") from exc


def decode_rc_data(payload: bytes) -> RcCodeData:
    """Unpack the first 16 bytes of ``payload``; extra bytes are ignored."""
    if len(payload) < PAYLOAD_SIZE:
        raise ShortBufferError(
            f"RC code payload needs {PAYLOAD_SIZE} bytes, got {len(payload)}"
        )
    code, length, repeat, pulse_length, sync_factor, one, zero, inverted = (
        _RC_STRUCT.unpack_from(payload)
    )
    return RcCodeData(
        code=code,
        length=length,
        repeat=repeat,
        pulse_length=pulse_length,
        sync_factor=sync_factor,
        one=one,
        zero=zero,
        inverted=inverted != 0,
    )
