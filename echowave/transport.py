from __future__ import annotations

import errno
import logging
from typing import Any, Optional

import serial
from serial.tools import list_ports

from .constants import BAUDRATE, FRAME_TIMEOUT, SERIAL_TIMEOUT
from .exceptions import EchoWaveConnectionError, PermissionPendingError

logger = logging.getLogger(__name__)

_PERMISSION_ERRNOS = (errno.EACCES, errno.EPERM)


class BaseTransport:
    """Minimal blocking interface shared by all transports.

    Implementations close themselves and raise
    :class:`EchoWaveConnectionError` on any I/O failure.
    """

    port: str = ""

    def __enter__(self) -> "BaseTransport":  # pragma: no cover
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # pragma: no cover
        self.close()

    def open(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def closed(self) -> bool:  # pragma: no cover - interface
        """Returns True if the transport is closed, False otherwise."""
        raise NotImplementedError

    def write(self, data: bytes, timeout: Optional[float]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def read(self, size: int, timeout: Optional[float]) -> bytes:  # pragma: no cover - interface
        """Read up to ``size`` bytes; ``b""`` if nothing arrived in time.

        A ``timeout`` of ``None`` or ``0`` blocks until data arrives.
        """
        raise NotImplementedError


class SerialTransport(BaseTransport):
    """Serial transport on top of pyserial, fixed at 9600 baud 8-N-1.

    ``port`` may be a device path (``/dev/ttyUSB0``, ``COM3``) or any
    pyserial URL such as ``socket://host:port`` or ``loop://``.
    """

    def __init__(self, port: str, frame_timeout: float = FRAME_TIMEOUT):
        self.port = port
        self.frame_timeout = frame_timeout
        self._serial: Any = None

    def open(self) -> None:
        if self._serial is not None:
            self.close()
        try:
            self._serial = serial.serial_for_url(
                self.port,
                baudrate=BAUDRATE,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=SERIAL_TIMEOUT,
                write_timeout=SERIAL_TIMEOUT,
            )
        except OSError as exc:
            if exc.errno in _PERMISSION_ERRNOS:
                raise PermissionPendingError(
                    f"No permission to open {self.port}: {exc}"
                ) from exc
            raise EchoWaveConnectionError(str(exc)) from exc
        except ValueError as exc:
            raise EchoWaveConnectionError(f"Invalid port {self.port!r}: {exc}") from exc
        logger.info("SerialTransport opened %s at %s baud", self.port, BAUDRATE)

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except OSError as exc:
            logger.warning("Error closing %s: %s", self.port, exc)
        finally:
            self._serial = None
            logger.info("SerialTransport closed.")

    def closed(self) -> bool:
        return self._serial is None

    def write(self, data: bytes, timeout: Optional[float]) -> None:
        port = self._require_open()
        try:
            port.write_timeout = timeout
            written = port.write(data)
            port.flush()
        except OSError as exc:  # SerialException and SerialTimeoutException included
            self.close()
            raise EchoWaveConnectionError(f"Write to {self.port} failed: {exc}") from exc
        if written is not None and written != len(data):
            self.close()
            raise EchoWaveConnectionError(
                f"Short write to {self.port}: {written} of {len(data)} bytes"
            )

    def read(self, size: int, timeout: Optional[float]) -> bytes:
        port = self._require_open()
        try:
            # Wait for the start of a frame, then give the rest a short deadline
            # so a truncated frame is not merged with the next one.
            port.timeout = timeout or None
            head = port.read(1)
            if not head or size <= 1:
                return bytes(head)
            port.timeout = self.frame_timeout
            return bytes(head) + bytes(port.read(size - 1))
        except OSError as exc:
            self.close()
            raise EchoWaveConnectionError(f"Read from {self.port} failed: {exc}") from exc

    def _require_open(self) -> Any:
        if self._serial is None:
            raise EchoWaveConnectionError("SerialTransport is not open")
        return self._serial


def discover_port(vid: Optional[int] = None, pid: Optional[int] = None) -> Optional[str]:
    """Return the device path of the first USB serial adapter, if any.

    Ports without USB ids (built-in UARTs) are skipped.
    """
    for info in sorted(list_ports.comports(), key=lambda p: p.device):
        if info.vid is None:
            continue
        if vid is not None and info.vid != vid:
            continue
        if pid is not None and info.pid != pid:
            continue
        logger.debug("Found USB serial adapter %s (%04x:%04x)", info.device, info.vid, info.pid or 0)
        return info.device
    return None
