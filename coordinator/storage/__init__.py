"""Storage layer: keyed blob backends and the chunk store built on them."""

from coordinator.storage.blob_store import (
    BlobNotFoundError,
    BlobStore,
    InMemoryBlobStore,
    LocalBlobStore,
)
from coordinator.storage.chunk_store import ChunkStore

__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "InMemoryBlobStore",
    "LocalBlobStore",
    "ChunkStore",
]
