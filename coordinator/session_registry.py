"""Session registry: upload metadata and received-chunk sets with durable snapshots."""

import json
import threading
from typing import ContextManager, Dict, List, Optional, Set, Tuple

from common.constants import SESSIONS_PREFIX
from common.logging_config import get_logger
from common.types import UploadSession
from coordinator.exceptions import (
    InvalidIndexError,
    InvalidMetadataError,
    SessionNotFoundError,
    StorageError,
)
from coordinator.storage.blob_store import BlobNotFoundError, BlobStore
from coordinator.utils import KeyedLocks, get_current_timestamp

logger = get_logger(__name__)


def _validate_metadata(total_chunks, total_size, chunk_size) -> None:
    if isinstance(total_chunks, bool) or not isinstance(total_chunks, int) or total_chunks <= 0:
        raise InvalidMetadataError(f"total_chunks must be a positive integer, got {total_chunks!r}")
    if isinstance(total_size, bool) or not isinstance(total_size, int) or total_size < 0:
        raise InvalidMetadataError(f"total_size must be a non-negative integer, got {total_size!r}")
    if chunk_size is None:
        return
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise InvalidMetadataError(f"chunk_size must be a positive integer, got {chunk_size!r}")
    if total_size > 0:
        expected = -(-total_size // chunk_size)
        if expected != total_chunks:
            raise InvalidMetadataError(
                f"total_chunks={total_chunks} does not match total_size={total_size} "
                f"with chunk_size={chunk_size} (expected {expected})"
            )


class SessionRegistry:
    """
    In-memory table of upload sessions, one durable JSON snapshot per session.

    Mutations for a session are serialized by that session's lock and are
    written through to the blob store before they become visible; a failed
    snapshot write leaves the previous state in place. Sessions never share
    a lock.
    """

    def __init__(self, blobs: BlobStore):
        """
        Initialize an empty registry.

        Args:
            blobs: Store that receives the session snapshots
        """
        self.blobs = blobs
        self._sessions: Dict[str, UploadSession] = {}
        self._locks = KeyedLocks()
        self._table_lock = threading.Lock()

    @staticmethod
    def snapshot_key(session_key: str) -> str:
        return f"{SESSIONS_PREFIX}/{session_key}.json"

    def lock(self, session_key: str) -> ContextManager[None]:
        """
        Hold the exclusive lock of one session. Re-entrant.
        """
        return self._locks.hold(session_key)

    def lock_count(self) -> int:
        return len(self._locks)

    def _require(self, session_key: str) -> UploadSession:
        session = self._sessions.get(session_key)
        if session is None:
            raise SessionNotFoundError(f"No upload session for key {session_key}")
        return session

    def _commit(self, session: UploadSession) -> None:
        session.updated_at = get_current_timestamp()
        payload = json.dumps(session.to_dict(), indent=2).encode("utf-8")
        try:
            self.blobs.put(self.snapshot_key(session.session_key), payload)
        except OSError as e:
            logger.error(f"Failed to persist session snapshot [session={session.session_key}]: {e}")
            raise StorageError(f"Failed to persist session {session.session_key}: {e}") from e
        with self._table_lock:
            self._sessions[session.session_key] = session

    def begin(
        self,
        session_key: str,
        file_name: str,
        total_chunks: int,
        total_size: int = 0,
        chunk_size: Optional[int] = None,
    ) -> UploadSession:
        """
        Create or upsert session metadata.

        Calling again with the same arguments changes nothing. Metadata may
        be replaced while no chunk has been received; afterwards a different
        chunk count or chunk size is rejected.

        Args:
            session_key: Key derived from the file name
            file_name: Logical file name
            total_chunks: Number of chunks in the upload
            total_size: Size of the whole file in bytes (informational)
            chunk_size: Fixed chunk size, if the client declares it

        Returns:
            Copy of the stored session

        Raises:
            InvalidMetadataError: If the metadata is invalid or conflicts
            StorageError: If the snapshot cannot be written
        """
        _validate_metadata(total_chunks, total_size, chunk_size)

        with self.lock(session_key):
            existing = self._sessions.get(session_key)

            if existing is None:
                session = UploadSession(
                    session_key=session_key,
                    file_name=file_name,
                    total_chunks=total_chunks,
                    total_size=total_size,
                    chunk_size=chunk_size,
                )
                self._commit(session)
                logger.info(
                    f"Upload session created [session={session_key}] "
                    f"file={file_name} total_chunks={total_chunks} total_size={total_size}"
                )
                return session.copy()

            if (existing.file_name == file_name
                    and existing.total_chunks == total_chunks
                    and existing.total_size == total_size
                    and (chunk_size is None or existing.chunk_size == chunk_size)):
                return existing.copy()

            if existing.received_chunks:
                if existing.total_chunks != total_chunks:
                    raise InvalidMetadataError(
                        f"Session {session_key} already has {len(existing.received_chunks)} chunks "
                        f"for total_chunks={existing.total_chunks}; cannot change to {total_chunks}"
                    )
                if (chunk_size is not None and existing.chunk_size is not None
                        and existing.chunk_size != chunk_size):
                    raise InvalidMetadataError(
                        f"Session {session_key} already uses chunk_size={existing.chunk_size}"
                    )

            updated = existing.copy()
            updated.file_name = file_name
            updated.total_chunks = total_chunks
            updated.total_size = total_size
            if chunk_size is not None:
                updated.chunk_size = chunk_size
            elif not existing.received_chunks:
                updated.chunk_size = None
            if not existing.received_chunks:
                updated.last_chunk_size = None
            self._commit(updated)
            logger.info(f"Upload session metadata updated [session={session_key}] total_chunks={total_chunks}")
            return updated.copy()

    def record_chunk(
        self,
        session_key: str,
        index: int,
        size: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ) -> bool:
        """
        Add an index to the received set.

        The chunk size learned from this chunk and, for the last index, its
        length are stored in the same snapshot as the index.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index
            size: Stored payload length
            chunk_size: Chunk size learned from this chunk, if the session had none

        Returns:
            True if the index was newly recorded, False if already present

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidIndexError: If index is outside [0, total_chunks)
            StorageError: If the snapshot cannot be written
        """
        with self.lock(session_key):
            session = self._require(session_key)
            self.validate_index(session, index)

            if index in session.received_chunks:
                logger.debug(f"Chunk {index} already recorded [session={session_key}]")
                return False

            updated = session.copy()
            updated.received_chunks.add(index)
            if chunk_size is not None and updated.chunk_size is None:
                updated.chunk_size = chunk_size
                logger.debug(f"Chunk size set to {chunk_size} [session={session_key}]")
            if size is not None and index == updated.total_chunks - 1:
                updated.last_chunk_size = size
            self._commit(updated)
            return True

    @staticmethod
    def validate_index(session: UploadSession, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < session.total_chunks:
            raise InvalidIndexError(
                f"Chunk index {index!r} out of range [0, {session.total_chunks}) "
                f"[session={session.session_key}]"
            )

    def forget_chunks(self, session_key: str, indices: Set[int]) -> None:
        """
        Remove indices from the received set (used when chunk data is lost).
        """
        with self.lock(session_key):
            session = self._require(session_key)
            updated = session.copy()
            updated.received_chunks -= set(indices)
            if session.total_chunks - 1 not in updated.received_chunks:
                updated.last_chunk_size = None
            self._commit(updated)

    def get(self, session_key: str) -> UploadSession:
        """
        Get a copy of a session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self.lock(session_key):
            return self._require(session_key).copy()

    def exists(self, session_key: str) -> bool:
        with self._table_lock:
            return session_key in self._sessions

    def get_received(self, session_key: str) -> Tuple[int, Set[int]]:
        """
        Get chunk count and received indices of a session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self.lock(session_key):
            session = self._require(session_key)
            return session.total_chunks, set(session.received_chunks)

    def is_complete(self, session_key: str) -> bool:
        with self.lock(session_key):
            return self._require(session_key).is_complete()

    def delete(self, session_key: str) -> None:
        """
        Remove all registry state for a session.

        Raises:
            StorageError: If the snapshot cannot be removed
        """
        with self.lock(session_key):
            with self._table_lock:
                self._sessions.pop(session_key, None)
            try:
                self.blobs.delete(self.snapshot_key(session_key))
            except OSError as e:
                raise StorageError(f"Failed to delete session snapshot {session_key}: {e}") from e
            logger.debug(f"Session removed from registry [session={session_key}]")

    def session_keys(self) -> List[str]:
        with self._table_lock:
            return list(self._sessions)

    def count(self) -> int:
        with self._table_lock:
            return len(self._sessions)

    def load(self) -> int:
        """
        Rebuild the in-memory table from persisted snapshots.

        Unreadable snapshots are logged and skipped.

        Returns:
            Number of sessions loaded
        """
        loaded = 0
        for key in self.blobs.list(SESSIONS_PREFIX):
            if not key.endswith(".json"):
                continue
            try:
                data = json.loads(self.blobs.get(key).decode("utf-8"))
                session = UploadSession.from_dict(data)
                session.received_chunks = {
                    i for i in session.received_chunks if 0 <= i < session.total_chunks
                }
            except (BlobNotFoundError, OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Skipping unreadable session snapshot {key}: {e}")
                continue

            with self._table_lock:
                self._sessions[session.session_key] = session
            loaded += 1

        logger.info(f"Loaded {loaded} upload sessions from snapshots")
        return loaded
