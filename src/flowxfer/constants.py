from __future__ import annotations

PROTOCOL_ID = 0x11223344
SERVER_PORT = 30000
CLIENT_PORT = 30001

DELTA_TIME = 1.0 / 30.0
TIMEOUT = 10.0
STATS_INTERVAL = 0.25

MAX_CHUNK_SIZE = 256
MAX_NAME_BYTES = 255
MAX_PACKET_SIZE = 1024  # receive buffer; any valid frame fits

DELIMITER = "|"
SENTINEL = b"complete"

RTT_THRESHOLD_MS = 250.0
GOOD_SEND_RATE = 30.0
BAD_SEND_RATE = 10.0
INITIAL_PENALTY_TIME = 4.0
MIN_PENALTY_TIME = 1.0
MAX_PENALTY_TIME = 60.0
PENALTY_REDUCTION_PERIOD = 10.0

TAGGED_VERSION = 1
TAGGED_HEADER_FORMAT = "!BBH"  # version, kind, payload length
