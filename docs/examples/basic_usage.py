from echowave import DeviceSession, SerialTransport

# Blocking use without asyncio: capture one code and send it back
with DeviceSession(SerialTransport("/dev/ttyUSB0")) as session:
    codes = session.start_listening()
    code = next(codes)
    print(f"Captured code 0x{code.code:08X} ({code.length} bits, pulse {code.pulse_length} us)")

    session.stop_listening()
    session.send_code(code)
    print("Code sent")
