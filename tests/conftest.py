import logging
import threading
import time
from typing import List, Optional, Union

import pytest

from echowave.exceptions import EchoWaveConnectionError
from echowave.frame import decode_message, encode_message
from echowave.session import DeviceSession
from echowave.transport import BaseTransport
from echowave.types import Message, MessageKind, RcCodeData


class FakeTransport(BaseTransport):
    """Scripted in-memory transport.

    Every ``read`` pops the next scripted chunk; an exception instance in
    the script is raised instead (and closes the transport, like the real
    one). An empty script behaves like a read timeout.
    """

    def __init__(self, port: str = "/dev/fake0", max_empty_reads: int = 1000):
        self.port = port
        self.max_empty_reads = max_empty_reads
        self.inbound: List[Union[bytes, Exception]] = []
        self.writes: List[bytes] = []
        self.open_count = 0
        self.write_error: Optional[Exception] = None
        self._open = False
        self._empty_reads = 0
        self._lock = threading.Lock()

    def open(self) -> None:
        self._open = True
        self.open_count += 1

    def close(self) -> None:
        self._open = False

    def closed(self) -> bool:
        return not self._open

    def feed(self, *chunks: Union[bytes, Exception, Message]) -> None:
        with self._lock:
            for chunk in chunks:
                self.inbound.append(encode_message(chunk) if isinstance(chunk, Message) else chunk)

    def write(self, data: bytes, timeout: Optional[float]) -> None:
        if not self._open:
            raise EchoWaveConnectionError("FakeTransport is not open")
        if self.write_error is not None:
            self._open = False
            raise self.write_error
        self.writes.append(bytes(data))

    def read(self, size: int, timeout: Optional[float]) -> bytes:
        if not self._open:
            raise EchoWaveConnectionError("FakeTransport is not open")
        with self._lock:
            chunk = self.inbound.pop(0) if self.inbound else None
        if isinstance(chunk, Exception):
            self._open = False
            raise chunk
        if chunk is None:
            self._empty_reads += 1
            if self._empty_reads > self.max_empty_reads:
                raise RuntimeError("FakeTransport script exhausted")
            time.sleep(0.001)
            return b""
        return chunk[:size]

    def written_messages(self) -> List[Message]:
        return [decode_message(data) for data in self.writes]


@pytest.fixture
def logger():
    return logging.getLogger(__name__)


@pytest.fixture
def rc_data() -> RcCodeData:
    return RcCodeData(
        code=0x01A2B3C4,
        length=24,
        repeat=3,
        pulse_length=350,
        sync_factor=31,
        one=1,
        zero=0,
        inverted=False,
    )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(fake_transport, logger) -> DeviceSession:
    """A session that is already open and idle (the device announced READY)."""
    fake_transport.feed(Message(MessageKind.READY))
    sess = DeviceSession(fake_transport, listen_timeout=0.01, logger=logger)
    sess.open()
    fake_transport.writes.clear()
    return sess
