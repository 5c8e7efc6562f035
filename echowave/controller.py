import json
import time
import logging
import asyncio
from dataclasses import fields
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from .constants import DEFAULT_CODE_COLOR
from .exceptions import EchoWaveConnectionError, EchoWaveError, PermissionPendingError
from .mqtt import MqttPublisher, code_to_dict
from .persistence import RcCodeStore
from .rc_code import encode_rc_data
from .session import DeviceSession
from .types import DeviceEvent, EventType, RcCode, RcCodeData


class CommandError(EchoWaveError):
    """Raised when an MQTT command cannot be carried out."""


class EchoWaveController:
    """Drives a :class:`DeviceSession` from asyncio and surfaces device events.

    The session is blocking; every call into it runs on a worker thread and
    the listen loop gets a thread of its own, forwarding codes through an
    ``asyncio.Queue``.
    """

    def __init__(
        self,
        session: DeviceSession,
        event_callback: Optional[Callable[[DeviceEvent], Awaitable[None]]] = None,
        store: Optional[RcCodeStore] = None,
        publisher: Optional[MqttPublisher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.event_callback = event_callback
        self.store = store
        self.publisher = publisher
        self.logger = logger or logging.getLogger(__name__)

        self.codes: List[RcCode] = []
        self._listen_task: Optional[asyncio.Task[None]] = None
        self._consumer_task: Optional[asyncio.Task[None]] = None
        self._command_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def listening(self) -> bool:
        return self.session.is_listening

    async def __aenter__(self) -> "EchoWaveController":
        if self.store:
            self.codes = await asyncio.to_thread(self.store.load)
        if self.publisher:
            self.publisher.register_command_callback(self._handle_mqtt_command)
            self._command_task = asyncio.create_task(
                self.publisher.command_listener(), name="echowave-commands"
            )
            await self.publisher.publish_codes(self.codes)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.listening:
            try:
                await self.stop_listening()
            except EchoWaveError as e:
                self.logger.warning("Could not stop listen mode: %s", e)
        if self._command_task:
            self._command_task.cancel()
            await asyncio.gather(self._command_task, return_exceptions=True)
            self._command_task = None
        await asyncio.to_thread(self.session.close)
        for task in (self._listen_task, self._consumer_task):
            if task:
                await asyncio.gather(task, return_exceptions=True)

    async def run(self, timeout: Optional[float] = None) -> None:
        """Wait until :meth:`stop` is called or ``timeout`` seconds passed."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.info("Run timeout of %ss reached", timeout)

    def stop(self) -> None:
        self._stop_event.set()

    async def initialize(self) -> bool:
        success = await self._open()
        await self._emit(DeviceEvent(EventType.INITIALIZED, success=success))
        return success

    async def _open(self) -> bool:
        try:
            await asyncio.to_thread(self.session.open)
        except PermissionPendingError as e:
            self.logger.info("%s", e)
            return False
        except EchoWaveConnectionError as e:
            self.logger.error("Failed to open device: %s", e)
            return False
        return True

    async def _ensure_initialized(self) -> bool:
        if self.session.is_initialized:
            return True
        return await self._open()

    async def start_listening(self) -> bool:
        if self.listening:
            self.logger.warning("Already listening")
            return True

        success = False
        if await self._ensure_initialized():
            try:
                codes = await asyncio.to_thread(self.session.start_listening)
            except EchoWaveError as e:
                self.logger.error("Failed to start listening: %s", e)
            else:
                queue: asyncio.Queue[Optional[RcCodeData]] = asyncio.Queue()
                self._consumer_task = asyncio.create_task(
                    self._consume_codes(queue), name="echowave-codes"
                )
                self._listen_task = asyncio.create_task(
                    self._listen_worker(codes, queue), name="echowave-listen"
                )
                success = True

        await self._emit(DeviceEvent(EventType.LISTEN_MODE, success=success))
        return success

    async def stop_listening(self, strict: bool = False) -> None:
        await asyncio.to_thread(self.session.stop_listening, strict)
        if self._listen_task:
            await asyncio.gather(self._listen_task, return_exceptions=True)
            self._listen_task = None

    async def send_code(self, data: RcCodeData) -> bool:
        success = False
        try:
            # Checked before listen mode is left
            encode_rc_data(data)
        except ValueError as e:
            self.logger.error("Cannot send RC code: %s", e)
        else:
            success = await self._send(data)

        await self._emit(DeviceEvent(EventType.SEND_RC_CODE, success=success))
        return success

    async def _send(self, data: RcCodeData) -> bool:
        if not await self._ensure_initialized():
            return False
        try:
            if self.listening:
                await self.stop_listening()
            await asyncio.to_thread(self.session.send_code, data)
        except EchoWaveError as e:
            self.logger.error("Failed to send RC code: %s", e)
            return False
        return True

    async def update_code(self, old: RcCode, new: RcCode) -> None:
        self.codes = [new if code == old else code for code in self.codes]
        await self._codes_changed()

    async def remove_code(self, code: RcCode) -> None:
        self.codes = [c for c in self.codes if c != code]
        await self._codes_changed()

    async def clear_codes(self) -> None:
        self.codes = []
        await self._codes_changed()

    async def _listen_worker(self, codes: Iterator[RcCodeData], queue: "asyncio.Queue[Optional[RcCodeData]]") -> None:
        loop = asyncio.get_running_loop()

        def drain() -> None:
            try:
                for data in codes:
                    loop.call_soon_threadsafe(queue.put_nowait, data)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, None)

        try:
            await asyncio.to_thread(drain)
        except EchoWaveError as e:
            self.logger.error("Listen loop aborted: %s", e)
            await self._emit(DeviceEvent(EventType.LISTEN_MODE, success=False))

    async def _consume_codes(self, queue: "asyncio.Queue[Optional[RcCodeData]]") -> None:
        while True:
            data = await queue.get()
            if data is None:
                break
            try:
                await self._on_code_received(data)
            except Exception:
                self.logger.exception("Error handling received RC code")

    async def _on_code_received(self, data: RcCodeData) -> None:
        code = RcCode(color=DEFAULT_CODE_COLOR, data=data, timestamp=int(time.time() * 1000))
        self.logger.info("RC code received: %s", data)
        self.codes.append(code)
        await self._codes_changed()
        await self._emit(DeviceEvent(EventType.RC_CODE_RECEIVED, code=code))

    async def _codes_changed(self) -> None:
        if self.store:
            await asyncio.to_thread(self.store.save, self.codes)
        if self.publisher:
            await self.publisher.publish_codes(self.codes)

    async def _emit(self, event: DeviceEvent) -> None:
        self.logger.debug("Event %s (success=%s)", event.type.value, event.success)
        if self.event_callback:
            await self.event_callback(event)
        if self.publisher:
            await self.publisher.publish_event(event)

    async def _handle_mqtt_command(self, command: str, payload: str) -> None:
        """Runs one command received on ``<topic>/commands/<command>``.

        The payload is JSON; a ``req_id`` in it is echoed in the response.
        """
        req_id = None
        try:
            args: Dict[str, Any] = json.loads(payload) if payload.strip() else {}
            if not isinstance(args, dict):
                raise CommandError("Payload must be a JSON object")
            req_id = args.get("req_id")
            result = await self._dispatch_command(command, args)
        except (EchoWaveError, ValueError, TypeError) as e:
            self.logger.warning("MQTT command %s failed: %s", command, e)
            if self.publisher:
                await self.publisher.publish_simple(
                    self.publisher.error_topic,
                    json.dumps({"req_id": req_id, "command": command, "success": False, "error": str(e)}),
                )
            return

        if self.publisher:
            await self.publisher.publish_simple(
                self.publisher.response_topic,
                json.dumps({"req_id": req_id, "command": command, "success": result is not False, "payload": result}),
            )

    async def _dispatch_command(self, command: str, args: Dict[str, Any]) -> Any:
        if command == "start_listening":
            return await self.start_listening()
        if command == "stop_listening":
            await self.stop_listening(strict=True)
            return True
        if command == "send_code":
            return await self.send_code(self._code_from_args(args))
        if command == "list_codes":
            return [code_to_dict(code) for code in self.codes]
        if command == "clear_codes":
            await self.clear_codes()
            return True
        raise CommandError(f"Unknown command: {command}")

    def _code_from_args(self, args: Dict[str, Any]) -> RcCodeData:
        if "index" in args:
            index = int(args["index"])
            if not 0 <= index < len(self.codes):
                raise CommandError(f"No stored RC code at index {index}")
            return self.codes[index].data
        names = [f.name for f in fields(RcCodeData)]
        missing = [name for name in names if name not in args and name != "inverted"]
        if missing:
            raise CommandError(f"Missing RC code fields: {', '.join(missing)}")
        data = RcCodeData(
            code=int(args["code"]),
            length=int(args["length"]),
            repeat=int(args["repeat"]),
            pulse_length=int(args["pulse_length"]),
            sync_factor=int(args["sync_factor"]),
            one=int(args["one"]),
            zero=int(args["zero"]),
            inverted=bool(args.get("inverted", False)),
        )
        encode_rc_data(data)
        return data
