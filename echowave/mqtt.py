import json
import logging
import os
import asyncio
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import aiomqtt as mqtt
import paho.mqtt.client as paho_mqtt  # topic_matches_sub

from .persistence import get_or_create_client_id
from .types import DeviceEvent, RcCode


def code_to_dict(code: RcCode) -> Dict[str, Any]:
    return asdict(code)


class MqttPublisher:
    """Publishes device events to an MQTT broker and listens for commands.

    Connection settings default to the ``MQTT_*`` environment variables.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        topic: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.client_id = get_or_create_client_id()
        self.client: Optional[mqtt.Client] = None  # set in __aenter__

        self.mqtt_host = host or os.environ.get("MQTT_HOST", "localhost")
        self.mqtt_port = port or int(os.environ.get("MQTT_PORT", 1883))
        self.mqtt_topic = topic or os.environ.get("MQTT_TOPIC", "echowave")
        self.mqtt_username = username or os.environ.get("MQTT_USERNAME")
        self.mqtt_password = password or os.environ.get("MQTT_PASSWORD")

        self.command_callback: Optional[Callable[[str, str], Awaitable[None]]] = None
        self.command_topic = f"{self.mqtt_topic}/commands/#"
        self.response_topic = "responses"
        self.error_topic = "errors"

    async def __aenter__(self) -> "MqttPublisher":
        self.logger.debug("Initializing MQTT client...")
        credentials = {}
        if self.mqtt_username and self.mqtt_password:
            credentials = {"username": self.mqtt_username, "password": self.mqtt_password}
        self.client = mqtt.Client(
            hostname=self.mqtt_host,
            port=self.mqtt_port,
            identifier=self.client_id,
            **credentials,
        )
        try:
            await self.client.__aenter__()
        except Exception:
            self.client = None
            self.logger.error("Could not connect to MQTT broker %s:%s", self.mqtt_host, self.mqtt_port, exc_info=True)
            raise
        self.logger.info("Connected to MQTT broker %s:%s", self.mqtt_host, self.mqtt_port)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client:
            self.logger.info("Disconnecting from MQTT broker...")
            await self.client.__aexit__(exc_type, exc_val, exc_tb)
            self.client = None
            self.logger.info("Disconnected from MQTT broker.")

    async def is_connected(self) -> bool:
        return self.client is not None

    def register_command_callback(self, callback: Callable[[str, str], Awaitable[None]]) -> None:
        """Registers an awaitable callback for incoming commands."""
        self.command_callback = callback

    async def command_listener(self) -> None:
        """Listens on ``<topic>/commands/#`` and hands each command to the callback."""
        if not self.client:
            self.logger.error("MQTT client is not connected. Cannot start command listener.")
            return

        try:
            await self.client.subscribe(self.command_topic)
            self.logger.info("Command listener started for %s", self.command_topic)
            async for message in self.client.messages:
                topic_str = str(message.topic)
                if not paho_mqtt.topic_matches_sub(self.command_topic, topic_str):
                    continue
                try:
                    payload = message.payload.decode("utf-8") if message.payload else ""
                    self.logger.debug("Received MQTT message on %s: %s", topic_str, payload)
                    # Topic structure: <topic>/commands/<command>
                    parts = topic_str.split("/")
                    cmd_index = parts.index("commands")
                    if len(parts) <= cmd_index + 1:
                        self.logger.warning("Received command without name on %s", topic_str)
                        continue
                    if self.command_callback:
                        await self.command_callback(parts[cmd_index + 1], payload)
                except Exception:
                    self.logger.exception("Error processing incoming MQTT message")
        except mqtt.MqttError:
            self.logger.warning("Command listener stopped due to MQTT error (e.g. disconnect).")
        except asyncio.CancelledError:
            self.logger.info("Command listener task cancelled.")
            raise

    @staticmethod
    def _event_to_json(event: DeviceEvent) -> str:
        event_dict = {
            "type": event.type.value,
            "success": event.success,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.code is not None:
            event_dict["code"] = code_to_dict(event.code)
        return json.dumps(event_dict)

    async def publish_simple(self, subtopic: str, payload: str, retain: bool = False) -> None:
        """Publishes a string payload to a subtopic of the main topic."""
        if not self.client:
            self.logger.warning("Attempted to publish without an active MQTT client.")
            return

        topic = f"{self.mqtt_topic}/{subtopic}"
        try:
            await self.client.publish(topic, payload, retain=retain)
            self.logger.debug("Published simple message to %s: %s", topic, payload)
        except mqtt.MqttError:
            self.logger.error("Failed to publish simple message to %s", topic, exc_info=True)

    async def publish_event(self, event: DeviceEvent) -> None:
        await self.publish_simple(f"events/{event.type.value}", self._event_to_json(event))

    async def publish_codes(self, codes: Iterable[RcCode]) -> None:
        """Publishes the whole code list (retained)."""
        payload = json.dumps([code_to_dict(code) for code in codes])
        await self.publish_simple("codes", payload, retain=True)
