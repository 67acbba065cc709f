# Chat protocol constants (version, framing, limits)

PROTOCOL_VERSION = "0.1"

# Dotted numeral: one or more digit groups separated by "."
VERSION_PATTERN = r"^(?:[0-9]+\.)*[0-9]+$"

DEFAULT_PORT = 2019

# Every frame on the wire is UTF-8 JSON text terminated by a single NUL.
MESSAGE_SEPARATOR = b"\0"

# The implicit room whose membership is every registered connection.
DEFAULT_ROOM = ""

# Default limits
DISPLAY_NAME_MAX_CHARS = 32
ROOM_NAME_MAX_CHARS = 64
MAX_FRAME_BYTES = 64 * 1024
RECV_CHUNK_BYTES = 4096
