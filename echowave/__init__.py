"""A Python library to drive an EchoWave 433 MHz radio relay."""

from .controller import EchoWaveController
from .session import DeviceSession
from .transport import SerialTransport, discover_port
from .types import Message, MessageKind, RcCode, RcCodeData, ReplyData, ReplyKind

__all__ = [
    "EchoWaveController",
    "DeviceSession",
    "SerialTransport",
    "discover_port",
    "Message",
    "MessageKind",
    "RcCode",
    "RcCodeData",
    "ReplyData",
    "ReplyKind",
]
