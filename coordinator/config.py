"""Configuration settings for the upload coordinator server."""

import os
from common.constants import (
    DEFAULT_UPLOAD_DATA_DIR,
    DEFAULT_UPLOAD_OUTPUT_DIR,
    MAX_CHUNK_SIZE_BYTES,
    SERVER_PORT,
)


UPLOAD_DATA_DIR = os.environ.get("UPLOAD_DATA_DIR", DEFAULT_UPLOAD_DATA_DIR)

UPLOAD_OUTPUT_DIR = os.environ.get("UPLOAD_OUTPUT_DIR", DEFAULT_UPLOAD_OUTPUT_DIR)

UPLOAD_HOST = os.environ.get("UPLOAD_HOST", "0.0.0.0")

UPLOAD_PORT = int(os.environ.get("UPLOAD_PORT", str(SERVER_PORT)))

UPLOAD_MAX_CHUNK_SIZE = int(os.environ.get("UPLOAD_MAX_CHUNK_SIZE", str(MAX_CHUNK_SIZE_BYTES)))

# Comma-separated browser origins allowed to call the API
UPLOAD_CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("UPLOAD_CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
