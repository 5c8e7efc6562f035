import asyncio

from echowave import DeviceSession, EchoWaveController, SerialTransport
from echowave.persistence import RcCodeStore


async def on_event(event):
    print(f"{event.type.value}: {'ok' if event.success else 'failed'}")


async def main():
    session = DeviceSession(SerialTransport("/dev/ttyUSB0"))
    async with EchoWaveController(session, event_callback=on_event, store=RcCodeStore()) as controller:
        if not await controller.initialize():
            return
        await controller.start_listening()
        # Captured codes end up in controller.codes and in the code store
        await controller.run(timeout=30)
        await controller.stop_listening()

        if controller.codes:
            await controller.send_code(controller.codes[-1].data)

asyncio.run(main())
