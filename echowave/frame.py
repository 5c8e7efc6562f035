"""Message frame builder and parser.

Frame layout (identical in both directions)::

    +--------+--------------------------------------+----------+
    |  Kind  |               Payload                |   CRC    |
    | 1 byte |  16 bytes: RC code, reply or zeroes  |  1 byte  |
    +--------+--------------------------------------+----------+

- Kind: :class:`~echowave.types.MessageKind` tag
- Payload: RC code for ``TX_REQUEST``/``RX_REPLY``, reply status for
  ``REPLY`` (zero padded), all zero otherwise
- CRC: CRC-8 over kind + payload (bytes 0..16)
"""

from __future__ import annotations

from .constants import CRC_OFFSET, MSG_SIZE, PAYLOAD_SIZE
from .crc import crc8
from .exceptions import IntegrityError, UnknownKindError, WrongSizeError
from .rc_code import decode_rc_data, encode_rc_data
from .types import Message, MessageKind, RcCodeData, ReplyData, ReplyKind

_EMPTY_PAYLOAD = bytes(PAYLOAD_SIZE)
_REPLY_KINDS = frozenset(ReplyKind)


def _encode_payload(message: Message) -> bytes:
    data = message.data
    if isinstance(data, RcCodeData):
        return encode_rc_data(data)
    if isinstance(data, ReplyData):
        return bytes([data.kind]).ljust(PAYLOAD_SIZE, b"\x00")
    return _EMPTY_PAYLOAD


def encode_message(message: Message) -> bytes:
    """Build the 18-byte frame for ``message``; any ``crc`` on it is ignored."""
    body = bytes([message.kind]) + _encode_payload(message)
    return body + bytes([crc8(body)])


def decode_message(data: bytes) -> Message:
    """Parse one 18-byte frame.

    The checksum is extracted but not verified, see :func:`verify_checksum`.

    Raises:
        WrongSizeError: If ``data`` is not exactly 18 bytes long.
        UnknownKindError: If the tag is not known. A ``REPLY`` with an unknown
            status decodes with ``data=None``.
    """
    if len(data) != MSG_SIZE:
        raise WrongSizeError(f"Expected {MSG_SIZE} bytes, got {len(data)}")

    try:
        kind = MessageKind(data[0])
    except ValueError:
        raise UnknownKindError(f"Unknown message kind 0x{data[0]:02X}") from None

    payload = data[1:CRC_OFFSET]
    if kind in (MessageKind.TX_REQUEST, MessageKind.RX_REPLY):
        body: object = decode_rc_data(payload)
    elif kind is MessageKind.REPLY:
        # unknown status byte: still a reply, without data
        body = ReplyData(ReplyKind(payload[0])) if payload[0] in _REPLY_KINDS else None
    else:
        body = None

    return Message(kind=kind, data=body, crc=data[CRC_OFFSET], raw=bytes(data))


def verify_checksum(message: Message) -> bool:
    """Return True if the checksum carried by ``message`` matches its content.

    Received bytes are checked when available, so corruption in padding is
    caught as well. A message without a checksum never verifies.
    """
    if message.crc is None:
        return False
    frame = message.raw if message.raw is not None else encode_message(message)
    return crc8(frame[:CRC_OFFSET]) == message.crc


def check_checksum(message: Message) -> None:
    """Like :func:`verify_checksum`, but raises on a mismatch.

    Raises:
        IntegrityError: If the checksum is missing or does not match.
    """
    if not verify_checksum(message):
        expected = crc8((message.raw or encode_message(message))[:CRC_OFFSET])
        raise IntegrityError(
            f"Checksum mismatch for {message.kind.name}: got {message.crc}, expected 0x{expected:02X}"
        )
