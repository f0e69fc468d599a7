"""Project-wide constants (chunk sizes, default paths, ports, retry settings)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 10 * 1024 * 1024  # 10 MiB default chunk size
MAX_CHUNK_SIZE_BYTES: int = 64 * 1024 * 1024

DEFAULT_UPLOAD_DATA_DIR: str = "/app/data"
DEFAULT_UPLOAD_OUTPUT_DIR: str = "/app/files"

CHUNKS_PREFIX: str = "chunks"
SESSIONS_PREFIX: str = "sessions"
CHUNK_SUFFIX: str = ".chk"
PARTIAL_SUFFIX: str = ".part"

SERVER_PORT: int = 8080

STREAM_PIECE_SIZE_BYTES: int = 64 * 1024

DEFAULT_MAX_WORKERS: int = 4
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_BACKOFF_MULTIPLIER: int = 2
DEFAULT_REQUEST_TIMEOUT_SECONDS: int = 30
