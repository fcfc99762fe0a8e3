"""Configuration constants for the static file server."""

HOST: str = ""
PORT: int = 8080
STATIC_DIR: str = "static"
INDEX_FILE: str = "index.html"
DIRECTORY_LISTING: bool = True
SERVER_NAME: str = "static-file-server/1.0"

READ_CHUNK_SIZE: int = 65_536
SOCKET_TIMEOUT_SECS: int = 5
KEEPALIVE_TIMEOUT_SECS: int = 5
MAX_KEEPALIVE_REQUESTS: int = 100

MAX_REQUEST_BYTES: int = 1_048_576
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 524_288
MAX_TARGET_LENGTH: int = 8_192

WORKER_COUNT: int = 16
REQUEST_QUEUE_SIZE: int = 128

LOG_FORMAT: str = "plain"
