import argparse
import logging
import signal
import sys
import os
from typing import Optional
import asyncio
from dotenv import load_dotenv

from echowave.constants import DEFAULT_CODES_FILE, LISTEN_TIMEOUT
from echowave.controller import EchoWaveController
from echowave.exceptions import EchoWaveConnectionError
from echowave.mqtt import MqttPublisher
from echowave.persistence import RcCodeStore
from echowave.session import DeviceSession
from echowave.transport import SerialTransport, discover_port
from echowave.types import DeviceEvent, EventType


def initialize_logging(log_level_str: str):
    """Initializes logging from a level name such as ``"DEBUG"``."""
    level = getattr(logging, log_level_str.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # basicConfig is a no-op on repeated calls
    logging.getLogger().setLevel(level)


initialize_logging(os.environ.get("LOG_LEVEL", "INFO"))

logger = logging.getLogger("main")


async def event_callback(event: DeviceEvent):
    """Logs every device event."""
    if event.type is EventType.RC_CODE_RECEIVED and event.code is not None:
        logger.info("RC code received: %s", event.code.to_line())
    else:
        logger.info("Event %s: %s", event.type.value, "ok" if event.success else "failed")


def _parse_timeout(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip().lower() in ("", "none", "0"):
        return None
    return float(value)


async def _async_run(args: argparse.Namespace):
    port = args.serial or discover_port()
    if not port:
        logger.error("No serial port configured or found. Use --serial or set ECHOWAVE_SERIAL_PORT.")
        sys.exit(1)

    logger.info("Using serial port %s", port)
    session = DeviceSession(
        SerialTransport(port),
        listen_timeout=_parse_timeout(args.listen_timeout),
    )
    store = RcCodeStore(args.codes_file)

    publisher = None
    if args.mqtt_host:
        publisher = MqttPublisher(
            host=args.mqtt_host,
            port=args.mqtt_port,
            topic=args.mqtt_topic,
            username=args.mqtt_username,
            password=args.mqtt_password,
        )

    controller = EchoWaveController(
        session=session,
        event_callback=event_callback,
        store=store,
        publisher=publisher,
        logger=logger,
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig, frame):
        logger.info("Shutting down...")
        loop.call_soon_threadsafe(controller.stop)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if publisher:
            async with publisher, controller:
                await _run_controller(controller, args)
        else:
            async with controller:
                await _run_controller(controller, args)
    except EchoWaveConnectionError as e:
        logger.error("Connection error: %s", e)
        sys.exit(1)


async def _run_controller(controller: EchoWaveController, args: argparse.Namespace):
    if not await controller.initialize():
        logger.error("Could not initialize the device.")
        sys.exit(1)

    if args.send is not None:
        if not 0 <= args.send < len(controller.codes):
            logger.error("No stored RC code at index %s (%d stored)", args.send, len(controller.codes))
            sys.exit(1)
        if not await controller.send_code(controller.codes[args.send].data):
            sys.exit(1)
        return

    if args.listen:
        await controller.start_listening()

    logger.info("Running, press Ctrl+C to stop.")
    await controller.run(timeout=args.timeout)


def main():
    # .env values become defaults; command line options override them
    load_dotenv()

    DEFAULT_SERIAL_PORT = os.environ.get("ECHOWAVE_SERIAL_PORT")
    DEFAULT_CODES = os.environ.get("ECHOWAVE_CODES_FILE", DEFAULT_CODES_FILE)
    DEFAULT_LISTEN_TIMEOUT = os.environ.get("ECHOWAVE_LISTEN_TIMEOUT", str(LISTEN_TIMEOUT))

    DEFAULT_MQTT_HOST = os.environ.get("MQTT_HOST")
    DEFAULT_MQTT_PORT = int(os.environ.get("MQTT_PORT", 1883))
    DEFAULT_MQTT_USERNAME = os.environ.get("MQTT_USERNAME")
    DEFAULT_MQTT_PASSWORD = os.environ.get("MQTT_PASSWORD")
    DEFAULT_MQTT_TOPIC = os.environ.get("MQTT_TOPIC", "echowave")

    DEFAULT_LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    parser = argparse.ArgumentParser(description="EchoWave 433 MHz relay gateway")

    parser.add_argument("--serial", default=DEFAULT_SERIAL_PORT, help=f"Serial port or pyserial URL (e.g. /dev/ttyUSB0, socket://host:port). Default: {DEFAULT_SERIAL_PORT or 'first USB serial adapter'}")
    parser.add_argument("--codes-file", default=DEFAULT_CODES, help=f"File for captured RC codes. Default: {DEFAULT_CODES}")
    parser.add_argument("--listen-timeout", default=DEFAULT_LISTEN_TIMEOUT, help="Listen-mode poll interval in seconds; 'none' blocks until the next code. Default: %(default)s")

    action = parser.add_mutually_exclusive_group()
    action.add_argument("--listen", action="store_true", help="Start listen mode right away")
    action.add_argument("--send", type=int, metavar="INDEX", help="Send the stored RC code with this index and exit")

    parser.add_argument("--mqtt-host", default=DEFAULT_MQTT_HOST, help=f"MQTT broker host. Default: {DEFAULT_MQTT_HOST or 'MQTT disabled'}")
    parser.add_argument("--mqtt-port", type=int, default=DEFAULT_MQTT_PORT, help=f"MQTT broker port. Default: {DEFAULT_MQTT_PORT}")
    parser.add_argument("--mqtt-username", default=DEFAULT_MQTT_USERNAME, help=f"MQTT user name. Default: {'*set*' if DEFAULT_MQTT_USERNAME else 'none'}")
    parser.add_argument("--mqtt-password", default=DEFAULT_MQTT_PASSWORD, help=f"MQTT password. Default: {'*set*' if DEFAULT_MQTT_PASSWORD else 'none'}")
    parser.add_argument("--mqtt-topic", default=DEFAULT_MQTT_TOPIC, help=f"MQTT base topic. Default: {DEFAULT_MQTT_TOPIC}")

    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help=f"Logging level. Default: {DEFAULT_LOG_LEVEL}")
    parser.add_argument("--timeout", type=float, default=None, help="Exit after N seconds (optional)")

    args = parser.parse_args()

    if args.log_level.upper() != DEFAULT_LOG_LEVEL.upper():
        initialize_logging(args.log_level)
        logger.debug("Logging level set to %s", args.log_level.upper())

    try:
        asyncio.run(_async_run(args))
    except KeyboardInterrupt:
        logger.info("Stopped by KeyboardInterrupt.")


if __name__ == "__main__":
    main()
