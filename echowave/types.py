"""Shared dataclasses and enums for the EchoWave relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum, auto
from typing import Optional, Protocol, Union


class MessageKind(IntEnum):
    """Tag byte at offset 0 of every message."""

    READY = 0x51
    RX_REQUEST = 0x52
    STOP = 0x53
    TX_REQUEST = 0x54
    REPLY = 0x55
    RX_REPLY = 0x56


class ReplyKind(IntEnum):
    """First payload byte of a ``REPLY`` message."""

    OK = 0x00
    BAD_CRC = 0x01
    INVALID_SIZE = 0x02
    INVALID_MESSAGE = 0x03


@dataclass(frozen=True, slots=True)
class RcCodeData:
    """Timing profile of one 433 MHz remote-control code (16 bytes on the wire)."""

    code: int
    length: int
    repeat: int
    pulse_length: int
    sync_factor: int
    one: int
    zero: int
    inverted: bool = False


@dataclass(frozen=True, slots=True)
class ReplyData:
    """Reply status, zero padded to the payload size on the wire."""

    kind: ReplyKind


Payload = Union[RcCodeData, ReplyData, None]

_RC_KINDS = (MessageKind.TX_REQUEST, MessageKind.RX_REPLY)


@dataclass(slots=True)
class Message:
    """A single 18-byte frame: tag, payload region and checksum.

    ``crc`` and ``raw`` are only set on decoded messages and are ignored
    for equality. A decoded ``REPLY`` with an unknown status has no data.
    """

    kind: MessageKind
    data: Payload = None
    crc: Optional[int] = field(default=None, compare=False)
    raw: Optional[bytes] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.kind = MessageKind(self.kind)
        if self.kind in _RC_KINDS:
            expected: tuple = (RcCodeData,)
        elif self.kind is MessageKind.REPLY:
            expected = (ReplyData, type(None))
        else:
            expected = (type(None),)
        if not isinstance(self.data, expected):
            raise ValueError(
                f"{self.kind.name} cannot carry {type(self.data).__name__}"
            )

    @classmethod
    def reply(cls, kind: ReplyKind) -> "Message":
        return cls(MessageKind.REPLY, ReplyData(kind))

    @classmethod
    def tx_request(cls, data: RcCodeData) -> "Message":
        return cls(MessageKind.TX_REQUEST, data)


class SessionState(Enum):
    """Lifecycle of a device session."""

    UNINITIALIZED = auto()
    OPENING = auto()
    HANDSHAKE = auto()
    IDLE = auto()
    LISTENING = auto()
    CLOSED = auto()


@dataclass(frozen=True, slots=True)
class RcCode:
    """A captured code as kept in the code list.

    Stored as one comma-delimited line:
    ``color,code,length,repeat,pulseLength,syncFactor,one,zero,inverted,timestamp``.
    """

    color: int
    data: RcCodeData
    timestamp: int

    @classmethod
    def from_line(cls, line: str) -> "RcCode":
        values = line.strip().split(",")
        if len(values) != 10:
            raise ValueError(f"Invalid RC code line: {line!r}")
        return cls(
            color=int(values[0]),
            data=RcCodeData(
                code=int(values[1]),
                length=int(values[2]),
                repeat=int(values[3]),
                pulse_length=int(values[4]),
                sync_factor=int(values[5]),
                one=int(values[6]),
                zero=int(values[7]),
                inverted=values[8].strip().lower() == "true",
            ),
            timestamp=int(values[9]),
        )

    def to_line(self) -> str:
        d = self.data
        fields = (
            self.color,
            d.code,
            d.length,
            d.repeat,
            d.pulse_length,
            d.sync_factor,
            d.one,
            d.zero,
            "true" if d.inverted else "false",
            self.timestamp,
        )
        return ",".join(str(value) for value in fields)


class EventType(str, Enum):
    """Discrete outcomes surfaced to the presentation layer."""

    INITIALIZED = "initialized"
    LISTEN_MODE = "listen_mode"
    SEND_RC_CODE = "send_rc_code"
    RC_CODE_RECEIVED = "rc_code_received"


@dataclass(slots=True)
class DeviceEvent:
    """Event emitted by the controller."""

    type: EventType
    success: bool = True
    code: Optional[RcCode] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PermissionBroker(Protocol):
    """Grants access to the serial device, e.g. a udev/polkit helper."""

    def has_permission(self, port: str) -> bool:
        """Return True if the device may be opened now."""
        ...

    def request_permission(self, port: str) -> None:
        """Ask for access; the grant arrives asynchronously."""
        ...
