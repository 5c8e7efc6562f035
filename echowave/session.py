"""Device protocol state machine for the EchoWave radio relay.

The link is half-duplex: every transport access happens while holding
``DeviceSession._lock``, so a request and its reply never interleave with
another exchange. The listen loop takes the lock for one read (plus its
acknowledgement) at a time and releases it before handing a code to the
caller.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Optional

from .constants import HANDSHAKE_TIMEOUT, LISTEN_TIMEOUT, MSG_SIZE, SERIAL_TIMEOUT
from .exceptions import (
    AlreadyListeningError,
    EchoWaveConnectionError,
    IntegrityError,
    NotInitializedError,
    NotListeningError,
    PermissionPendingError,
    UnknownKindError,
    WrongSizeError,
)
from .frame import check_checksum, decode_message, encode_message, verify_checksum
from .transport import BaseTransport
from .types import (
    Message,
    MessageKind,
    PermissionBroker,
    RcCodeData,
    ReplyKind,
    SessionState,
)

_IO_STATES = (SessionState.HANDSHAKE, SessionState.IDLE, SessionState.LISTENING)


class DeviceSession:
    """Owns one transport and sequences handshake, exchanges and listen mode.

    Usage::

        session = DeviceSession(SerialTransport("/dev/ttyUSB0"))
        session.open()
        for code in session.start_listening():
            ...
            session.stop_listening()   # from any thread
        session.send_code(code)
        session.close()
    """

    def __init__(
        self,
        transport: BaseTransport,
        timeout: float = SERIAL_TIMEOUT,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        listen_timeout: Optional[float] = LISTEN_TIMEOUT,
        permission_broker: Optional[PermissionBroker] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.timeout = timeout
        self.handshake_timeout = handshake_timeout
        self.listen_timeout = listen_timeout
        self.permission_broker = permission_broker
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._state = SessionState.UNINITIALIZED
        self._cancel = threading.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state in (SessionState.IDLE, SessionState.LISTENING)

    @property
    def is_listening(self) -> bool:
        return self._state is SessionState.LISTENING

    def __enter__(self) -> "DeviceSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        """Open the transport and bring the device into a known idle state.

        Raises:
            PermissionPendingError: Access not granted yet; retry later.
            EchoWaveConnectionError: The transport failed.
        """
        if self._state is not SessionState.UNINITIALIZED:
            self.close()

        with self._lock:
            self._state = SessionState.OPENING
            port = self.transport.port
            try:
                if self.permission_broker is not None and not self.permission_broker.has_permission(port):
                    self.permission_broker.request_permission(port)
                    raise PermissionPendingError(f"Waiting for permission to open {port}")
                self.transport.open()
            except PermissionPendingError:
                self._state = SessionState.UNINITIALIZED
                raise
            except EchoWaveConnectionError:
                self._state = SessionState.CLOSED
                raise

            self._state = SessionState.HANDSHAKE
            self._handshake()
            self._state = SessionState.IDLE
        self.logger.info("Device session open on %s", port)

    def close(self) -> None:
        """Release the transport; safe to call any number of times."""
        self.logger.debug("Closing device session")
        self._cancel.set()
        self.transport.close()
        self._state = SessionState.CLOSED

    def send_and_await(self, message: Message) -> Optional[Message]:
        """Send ``message`` and wait for one reply-bearing message.

        Returns:
            The reply, or None if nothing valid arrived within ``timeout``.
        """
        self._check_idle()
        with self._lock:
            self._check_idle()
            return self._exchange(message)

    def send_code(self, data: RcCodeData) -> Optional[Message]:
        """Transmit ``data``; the reply only serves as synchronization.

        Raises:
            NotInitializedError: No open session.
            AlreadyListeningError: Listen mode must be stopped first.
        """
        return self.send_and_await(Message.tx_request(data))

    def start_listening(self) -> Iterator[RcCodeData]:
        """Put the device into listen mode.

        ``RX_REQUEST`` is sent before this returns. The returned iterator
        yields every received code until :meth:`stop_listening` (or
        :meth:`close`) is observed; it cannot be restarted.
        """
        self._check_idle()
        with self._lock:
            self._check_idle()
            self._write_message(Message(MessageKind.RX_REQUEST))
            cancel = threading.Event()
            self._cancel = cancel
            self._state = SessionState.LISTENING
        self.logger.debug("Started listening")
        return self._listen(cancel)

    def stop_listening(self, strict: bool = False) -> Optional[Message]:
        """Leave listen mode and tell the device to stop receiving.

        Does nothing (apart from a warning) when not listening, unless
        ``strict`` is set, which raises :class:`NotListeningError` instead.
        Blocks until the listen loop has finished its current read.

        Raises:
            NotInitializedError: No open session.
        """
        if not self.is_initialized or self.transport.closed():
            raise NotInitializedError("Device is not initialized")
        if self._state is not SessionState.LISTENING:
            if strict:
                raise NotListeningError("Device is not listening")
            self.logger.warning("Not listening")
            return None

        self._cancel.set()
        with self._lock:
            if self._state is not SessionState.LISTENING:
                raise NotInitializedError("Device session closed while stopping")
            reply = self._exchange(Message(MessageKind.STOP))
            self._state = SessionState.IDLE
        self.logger.debug("Stopped listening")
        return reply

    def _listen(self, cancel: threading.Event) -> Iterator[RcCodeData]:
        while True:
            with self._lock:
                if cancel.is_set():
                    break
                try:
                    message = self._receive(self.listen_timeout)
                except (EchoWaveConnectionError, NotInitializedError):
                    if cancel.is_set():
                        break
                    raise
                if message is None or not isinstance(message.data, RcCodeData):
                    continue
                self._write_message(Message.reply(ReplyKind.OK))
            yield message.data
        self.logger.debug("Listen loop finished")

    def _handshake(self) -> None:
        raw = self._read(self.handshake_timeout)
        message: Optional[Message] = None
        if raw:
            try:
                message = decode_message(raw)
            except (WrongSizeError, UnknownKindError) as exc:
                self.logger.debug("Discarding handshake bytes: %s", exc)

        if message is not None and message.kind is MessageKind.READY and verify_checksum(message):
            self.logger.debug("Device ready")
            return

        # Device was left in an unknown mode by an earlier session.
        self.logger.info("Device did not announce READY, resetting it")
        self._write_message(Message.reply(ReplyKind.OK))
        self._write_message(Message(MessageKind.STOP))

    def _exchange(self, message: Message) -> Optional[Message]:
        self._write_message(message)
        reply = self._receive(self.timeout)
        if reply is None:
            self.logger.debug("No reply to %s", message.kind.name)
        return reply

    def _receive(self, timeout: Optional[float]) -> Optional[Message]:
        """Read one message; protocol noise is answered and dropped."""
        raw = self._read(timeout)
        if not raw:
            return None

        try:
            message = decode_message(raw)
            self.logger.debug("Received msg: %s", message)
            # Replies are not acknowledged, so a corrupt one is passed on as is.
            if message.kind is not MessageKind.REPLY:
                check_checksum(message)
        except WrongSizeError:
            self.logger.error("Received msg with wrong size: %d", len(raw))
            self._write_message(Message.reply(ReplyKind.INVALID_SIZE))
            return None
        except UnknownKindError as exc:
            self.logger.error("Received invalid msg: %s", exc)
            self._write_message(Message.reply(ReplyKind.INVALID_MESSAGE))
            return None
        except IntegrityError as exc:
            self.logger.error("Received msg with bad CRC: %s", exc)
            self._write_message(Message.reply(ReplyKind.BAD_CRC))
            return None
        return message

    def _write_message(self, message: Message) -> None:
        transport = self._require_transport()
        self.logger.debug("Sending msg: %s", message)
        try:
            transport.write(encode_message(message), self.timeout)
        except EchoWaveConnectionError:
            self.logger.error("Failed to send %s", message.kind.name)
            self._teardown()
            raise

    def _read(self, timeout: Optional[float]) -> bytes:
        transport = self._require_transport()
        try:
            return transport.read(MSG_SIZE, timeout)
        except EchoWaveConnectionError:
            self.logger.error("Failed to read msg")
            self._teardown()
            raise

    def _teardown(self) -> None:
        self.transport.close()
        self._state = SessionState.CLOSED

    def _require_transport(self) -> BaseTransport:
        if self._state not in _IO_STATES or self.transport.closed():
            raise NotInitializedError("Device is not initialized")
        return self.transport

    def _check_idle(self) -> None:
        if not self.is_initialized or self.transport.closed():
            raise NotInitializedError("Device is not initialized")
        if self._state is SessionState.LISTENING:
            raise AlreadyListeningError("Device is in listening mode")
