"""Chunk payload storage keyed by (session key, chunk index)."""

from typing import Iterator, List

from common.constants import CHUNKS_PREFIX, CHUNK_SUFFIX
from common.logging_config import get_logger
from coordinator.exceptions import StorageError
from coordinator.storage.blob_store import BlobStore

logger = get_logger(__name__)


class ChunkStore:
    """
    Stores individual chunk payloads on top of a BlobStore.

    Chunks are immutable once written; writing the same index again
    overwrites the blob atomically.
    """

    def __init__(self, blobs: BlobStore):
        self.blobs = blobs

    @staticmethod
    def chunk_key(session_key: str, index: int) -> str:
        """
        Get blob key for a chunk.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index

        Returns:
            Blob key string
        """
        return f"{CHUNKS_PREFIX}/{session_key}/{index}{CHUNK_SUFFIX}"

    def write_chunk(self, session_key: str, index: int, data: bytes) -> None:
        """
        Persist a chunk payload.

        Raises:
            StorageError: If the backend write fails
        """
        try:
            self.blobs.put(self.chunk_key(session_key, index), data)
        except OSError as e:
            logger.error(f"Failed to write chunk {index} [session={session_key}]: {e}")
            raise StorageError(f"Failed to store chunk {index}: {e}") from e
        logger.debug(f"Stored chunk {index} ({len(data)} bytes) [session={session_key}]")

    def iter_chunk(self, session_key: str, index: int) -> Iterator[bytes]:
        """
        Stream a chunk payload in pieces.

        Raises:
            BlobNotFoundError: If the chunk is not stored
        """
        return self.blobs.iter_pieces(self.chunk_key(session_key, index))

    def delete_chunk(self, session_key: str, index: int) -> bool:
        return self.blobs.delete(self.chunk_key(session_key, index))

    def list_indices(self, session_key: str) -> List[int]:
        """
        List the chunk indices stored for a session.

        Returns:
            Sorted list of indices
        """
        indices = []
        for key in self.blobs.list(f"{CHUNKS_PREFIX}/{session_key}"):
            name = key.rsplit("/", 1)[-1]
            if not name.endswith(CHUNK_SUFFIX):
                continue
            try:
                indices.append(int(name[:-len(CHUNK_SUFFIX)]))
            except ValueError:
                logger.warning(f"Ignoring unexpected blob in chunk area: {key}")
        return sorted(indices)

    def delete_session_chunks(self, session_key: str) -> List[int]:
        """
        Delete every chunk stored for a session.

        Returns:
            Indices that could not be deleted
        """
        failed = []
        for index in self.list_indices(session_key):
            try:
                self.delete_chunk(session_key, index)
            except OSError as e:
                logger.error(f"Failed to delete chunk {index} [session={session_key}]: {e}")
                failed.append(index)
        return failed
