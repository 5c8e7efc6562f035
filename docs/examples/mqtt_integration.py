import asyncio

from echowave import DeviceSession, EchoWaveController, SerialTransport
from echowave.mqtt import MqttPublisher


async def main():
    session = DeviceSession(SerialTransport("socket://192.168.1.100:23"))
    # Broker settings come from MQTT_HOST, MQTT_PORT, MQTT_TOPIC, ...
    async with MqttPublisher() as publisher:
        async with EchoWaveController(session, publisher=publisher) as controller:
            await controller.initialize()
            # Events go to echowave/events/<type>, commands are read from echowave/commands/<name>
            await controller.run()

asyncio.run(main())
