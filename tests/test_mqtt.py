import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from aiomqtt.message import Message as MqttMessage

from echowave.mqtt import MqttPublisher
from echowave.types import DeviceEvent, EventType, RcCode


@pytest.fixture(autouse=True)
def set_mqtt_env_vars(monkeypatch):
    monkeypatch.setenv("MQTT_HOST", "test-host")
    monkeypatch.setenv("MQTT_PORT", "1884")
    monkeypatch.setenv("MQTT_TOPIC", "test/echowave")
    monkeypatch.setenv("MQTT_USERNAME", "test-user")
    monkeypatch.setenv("MQTT_PASSWORD", "test-pass")


@pytest.fixture(autouse=True)
def fixed_client_id():
    with patch("echowave.mqtt.get_or_create_client_id", return_value="echowave-test") as mock_id:
        yield mock_id


def _configure_client(MockClient):
    mock_client_instance = MockClient.return_value
    mock_client_instance.publish = AsyncMock()
    mock_client_instance.subscribe = AsyncMock()
    mock_client_instance.__aenter__ = AsyncMock(return_value=None)
    mock_client_instance.__aexit__ = AsyncMock(return_value=None)
    return mock_client_instance


def _message(topic: str, payload: bytes):
    msg = Mock(spec=MqttMessage)
    msg.topic = MagicMock()
    msg.topic.__str__.return_value = topic
    msg.payload = payload
    return msg


@patch("echowave.mqtt.mqtt.Client")
def test_publisher_reads_environment(MockClient):
    publisher = MqttPublisher()

    assert publisher.mqtt_host == "test-host"
    assert publisher.mqtt_port == 1884
    assert publisher.mqtt_topic == "test/echowave"
    assert publisher.mqtt_username == "test-user"
    assert publisher.mqtt_password == "test-pass"
    assert publisher.command_topic == "test/echowave/commands/#"
    # the client is only created when entering the context
    MockClient.assert_not_called()


@patch("echowave.mqtt.mqtt.Client")
def test_publisher_arguments_override_environment(MockClient):
    publisher = MqttPublisher(host="broker", port=8883, topic="home/rf")
    assert (publisher.mqtt_host, publisher.mqtt_port, publisher.mqtt_topic) == ("broker", 8883, "home/rf")


@patch("echowave.mqtt.mqtt.Client")
@pytest.mark.asyncio
async def test_connect_passes_credentials(MockClient):
    _configure_client(MockClient)

    async with MqttPublisher() as publisher:
        assert await publisher.is_connected()

    MockClient.assert_called_once_with(
        hostname="test-host",
        port=1884,
        identifier="echowave-test",
        username="test-user",
        password="test-pass",
    )
    assert publisher.client is None


@patch("echowave.mqtt.mqtt.Client")
@pytest.mark.asyncio
async def test_publish_simple(MockClient, caplog):
    caplog.set_level(logging.DEBUG)
    mock_client_instance = _configure_client(MockClient)

    async with MqttPublisher() as publisher:
        await publisher.publish_simple("status", "online", retain=True)

    mock_client_instance.publish.assert_awaited_once_with("test/echowave/status", "online", retain=True)
    assert "Published simple message to test/echowave/status: online" in caplog.text


@pytest.mark.asyncio
async def test_publish_without_client_warns(caplog):
    caplog.set_level(logging.WARNING)
    await MqttPublisher().publish_simple("status", "online")
    assert "without an active MQTT client" in caplog.text


@patch("echowave.mqtt.mqtt.Client")
@pytest.mark.asyncio
async def test_publish_event_with_code(MockClient, rc_data):
    mock_client_instance = _configure_client(MockClient)
    code = RcCode(color=3, data=rc_data, timestamp=42)

    async with MqttPublisher() as publisher:
        await publisher.publish_event(DeviceEvent(EventType.RC_CODE_RECEIVED, code=code))

    (topic, payload), kwargs = mock_client_instance.publish.call_args
    assert topic == "test/echowave/events/rc_code_received"
    event = json.loads(payload)
    assert event["type"] == "rc_code_received"
    assert event["success"] is True
    assert event["code"]["data"]["pulse_length"] == 350
    assert event["code"]["timestamp"] == 42
    assert kwargs == {"retain": False}


@patch("echowave.mqtt.mqtt.Client")
@pytest.mark.asyncio
async def test_publish_codes_is_retained(MockClient, rc_data):
    mock_client_instance = _configure_client(MockClient)

    async with MqttPublisher() as publisher:
        await publisher.publish_codes([RcCode(color=1, data=rc_data, timestamp=2)])

    (topic, payload), kwargs = mock_client_instance.publish.call_args
    assert topic == "test/echowave/codes"
    assert json.loads(payload)[0]["data"]["code"] == rc_data.code
    assert kwargs == {"retain": True}


@patch("echowave.mqtt.mqtt.Client")
@pytest.mark.asyncio
async def test_command_listener(MockClient, caplog):
    caplog.set_level(logging.DEBUG)
    mock_client_instance = _configure_client(MockClient)
    mock_client_instance.messages = MagicMock()

    async def messages():
        yield _message("test/echowave/commands/list_codes", b'{"req_id": "1"}')
        yield _message("test/echowave/commands", b"")
        yield _message("test/echowave/commands/start_listening", b"")
        while True:
            await asyncio.sleep(100)

    mock_client_instance.messages.__aiter__ = Mock(return_value=messages())

    publisher = MqttPublisher()
    callback = AsyncMock()
    publisher.register_command_callback(callback)

    async with publisher:
        listener_task = asyncio.create_task(publisher.command_listener())
        await asyncio.sleep(0.1)
        listener_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await listener_task

    mock_client_instance.subscribe.assert_awaited_once_with("test/echowave/commands/#")
    assert callback.await_args_list[0].args == ("list_codes", '{"req_id": "1"}')
    assert callback.await_args_list[1].args == ("start_listening", "")
    assert callback.await_count == 2
    assert "Command listener task cancelled" in caplog.text


@pytest.mark.asyncio
async def test_command_listener_without_client(caplog):
    caplog.set_level(logging.ERROR)
    await MqttPublisher().command_listener()
    assert "Cannot start command listener" in caplog.text
