"""Constants used throughout the EchoWave project."""

import os

# Wire format
MSG_SIZE = 18
PAYLOAD_SIZE = 16
CRC_OFFSET = MSG_SIZE - 1

# CRC-8/SMBUS, must match the relay firmware
CRC8_POLY = 0x07
CRC8_INIT = 0x00

# Serial line parameters (fixed, 8-N-1)
BAUDRATE = 9600

# Timeouts in seconds
SERIAL_TIMEOUT = 0.5
HANDSHAKE_TIMEOUT = 0.5
# Listen-mode poll interval; None blocks until the next inbound message
LISTEN_TIMEOUT = 0.5
# Upper bound for the rest of a frame once its first byte arrived
FRAME_TIMEOUT = 0.1

# Opaque white, packed the way the companion app stores colors
DEFAULT_CODE_COLOR = 0xFFFFFFFF00000000

DEFAULT_CODES_FILE = os.path.join(os.path.expanduser("~"), ".echowave_codes.json")
CLIENT_ID_FILE = os.path.join(os.path.expanduser("~"), ".echowave_id")
