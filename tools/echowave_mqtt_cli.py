import argparse
import json
import os
import time
import uuid
from paho.mqtt.client import Client
from paho.mqtt.enums import CallbackAPIVersion
from dotenv import load_dotenv


class MqttCli:
    """A small CLI client that sends commands to the EchoWave MQTT gateway."""

    def __init__(self, host: str, port: int, base_topic: str, req_id: str, timeout: int = 5):
        self.host = host
        self.port = port
        self.req_id = req_id
        self.timeout = timeout
        self.cmd_topic = f"{base_topic}/commands"
        self.resp_topic = f"{base_topic}/responses"
        self.err_topic = f"{base_topic}/errors"
        self.response = None
        self.is_connected = False
        self.is_subscribed = False
        self.client = Client(callback_api_version=CallbackAPIVersion.VERSION2, client_id=f"echowave-cli-{req_id}")
        self.client.on_connect = self.on_connect
        self.client.on_subscribe = self.on_subscribe
        self.client.on_message = self.on_message

    def on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code == 0:
            self.is_connected = True
            client.subscribe([(self.resp_topic, 1), (self.err_topic, 0)])
        else:
            print(f"Error: Connection failed with reason: {reason_code}")

    def on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        self.is_subscribed = True

    def on_message(self, client, userdata, msg):
        try:
            payload = json.loads(msg.payload.decode())
        except json.JSONDecodeError:
            return
        if isinstance(payload, dict) and payload.get("req_id") == self.req_id:
            self.response = payload

    def connect_and_subscribe(self) -> dict:
        """Connects, starts the network loop and waits for the subscriptions."""
        try:
            self.client.connect(self.host, self.port, 60)
        except OSError as e:
            return {"success": False, "error": f"Failed to connect to MQTT broker: {e}"}

        self.client.loop_start()

        start_time = time.time()
        while (not self.is_connected or not self.is_subscribed) and (time.time() - start_time) < 5.0:
            time.sleep(0.05)

        if not self.is_connected or not self.is_subscribed:
            return {"success": False, "error": "Timeout waiting for connection or subscription to be active."}
        return {"success": True}

    def disconnect_and_stop(self):
        self.client.loop_stop()
        self.client.disconnect()

    def execute_command(self, command: str, payload_data: dict | None = None) -> dict:
        """Publishes a command and waits for the matching response."""
        self.response = None
        data = dict(payload_data or {})
        data["req_id"] = self.req_id

        topic = f"{self.cmd_topic}/{command}"
        print(f"-> Sending command to {topic} (req_id: {self.req_id})")
        self.client.publish(topic, json.dumps(data))

        start_time = time.time()
        while self.response is None and (time.time() - start_time) < self.timeout:
            time.sleep(0.1)

        if self.response:
            return self.response
        return {"success": False, "req_id": self.req_id, "error": "Timeout waiting for response."}


def run_cli():
    load_dotenv()

    default_host = os.environ.get("MQTT_HOST", "127.0.0.1")
    default_port = int(os.environ.get("MQTT_PORT", 1883))
    default_topic = os.environ.get("MQTT_TOPIC", "echowave")

    parser = argparse.ArgumentParser(description="CLI for EchoWave MQTT commands.")
    parser.add_argument("--host", default=default_host, help=f"MQTT broker host. Defaults to $MQTT_HOST or {default_host}.")
    parser.add_argument("--port", type=int, default=default_port, help=f"MQTT broker port. Defaults to $MQTT_PORT or {default_port}.")
    parser.add_argument("--topic", default=default_topic, help=f"Gateway base topic. Defaults to $MQTT_TOPIC or {default_topic}.")
    parser.add_argument("--timeout", type=int, default=5, help="Seconds to wait for a response.")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("listen", help="Start listen mode.")
    subparsers.add_parser("stop", help="Stop listen mode.")
    subparsers.add_parser("list", help="List the stored RC codes.")
    subparsers.add_parser("clear", help="Remove all stored RC codes.")
    send_parser = subparsers.add_parser("send", help="Send a stored RC code.")
    send_parser.add_argument("index", type=int, help="Index in the stored code list.")

    args = parser.parse_args()

    commands = {
        "listen": ("start_listening", {}),
        "stop": ("stop_listening", {}),
        "list": ("list_codes", {}),
        "clear": ("clear_codes", {}),
    }
    if args.command == "send":
        command, payload = "send_code", {"index": args.index}
    else:
        command, payload = commands[args.command]

    cli = MqttCli(host=args.host, port=args.port, base_topic=args.topic, req_id=str(uuid.uuid4()), timeout=args.timeout)
    result = cli.connect_and_subscribe()
    if result.get("success") is True:
        result = cli.execute_command(command, payload)
    cli.disconnect_and_stop()

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    run_cli()
