from typing import Final

EMPTY_BYTES: Final = b""
NEWLINE_BYTES: Final = b'\r\n'
EOF_BYTES: Final = (EMPTY_BYTES, NEWLINE_BYTES)

HTTP_1_0: Final = 'HTTP/1.0'
HTTP_1_1: Final = 'HTTP/1.1'
SUPPORTED_PROTOCOLS: Final = (HTTP_1_0, HTTP_1_1)

# headers, lowercase as they appear in the ASGI scope
CONNECTION: Final = b'connection'
CONTENT_LENGTH: Final = b'content-length'
TRANSFER_ENCODING: Final = b'transfer-encoding'
DATE: Final = b'date'
KEEP_ALIVE: Final = b'keep-alive'
CLOSE: Final = b'close'
CHUNKED: Final = b'chunked'

MAX_LINE_SIZE: Final = 64 * 1024
MAX_HEADERS: Final = 100

SHUTDOWN_TIMEOUT: Final = 30
DEFAULT_TERMINATION_DELAY: Final = 10
DEFAULT_LISTEN_ADDR: Final = ':8080'
DEFAULT_COLOR: Final = 'purple'
