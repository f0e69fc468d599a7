"""Chunk receiver: validates, stores and records incoming chunks."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common.checksum import verify_checksum
from common.constants import MAX_CHUNK_SIZE_BYTES
from common.logging_config import get_logger
from common.types import UploadSession
from coordinator.exceptions import (
    ChecksumMismatchError,
    ChunkSizeMismatchError,
    InvalidMetadataError,
    SessionNotFoundError,
)
from coordinator.services.reassembler import CompletedUpload, Reassembler
from coordinator.session_registry import SessionRegistry
from coordinator.storage.chunk_store import ChunkStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReceiveResult:
    """
    Outcome of an accepted chunk.
    """
    session_key: str
    index: int
    duplicate: bool
    received: int
    total_chunks: int
    completed: bool
    final_path: Optional[Path] = None


class ChunkReceiver:
    """
    Accepts chunks for upload sessions.

    A chunk is written to the chunk store before it is recorded, so the
    registry never counts a chunk that has no data.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        chunks: ChunkStore,
        reassembler: Reassembler,
        max_chunk_size: int = MAX_CHUNK_SIZE_BYTES,
    ):
        self.registry = registry
        self.chunks = chunks
        self.reassembler = reassembler
        self.max_chunk_size = max_chunk_size

    def receive(
        self,
        session_key: str,
        index: int,
        payload: bytes,
        file_name: Optional[str] = None,
        total_chunks: Optional[int] = None,
        total_size: int = 0,
        checksum: Optional[str] = None,
    ) -> ReceiveResult:
        """
        Store and record one chunk, reassembling when it completes the session.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index
            payload: Raw chunk bytes
            file_name: Logical file name, used when the chunk bootstraps the session
            total_chunks: Declared chunk count; bootstraps a missing session
            total_size: Declared file size, used on bootstrap
            checksum: Optional SHA-256 hex digest of the payload

        Returns:
            ReceiveResult describing the accepted chunk

        Raises:
            SessionNotFoundError: No session and no metadata to create one
            InvalidIndexError: Index outside [0, total_chunks)
            InvalidMetadataError: Declared total_chunks differs from the session
            ChunkSizeMismatchError: Payload length breaks the session chunk size
            ChecksumMismatchError: Payload does not match checksum
            StorageError: Chunk or snapshot write failed; nothing recorded
            InconsistentStateError: Reassembly found missing chunk data
        """
        size = len(payload)

        with self.registry.lock(session_key):
            if not self.registry.exists(session_key):
                completed = self.reassembler.completed_upload(session_key)
                if completed is not None and self._is_late_duplicate(completed, index, payload, total_chunks):
                    logger.info(f"Chunk {index} arrived after reassembly, treated as duplicate [session={session_key}]")
                    return self._completed_result(session_key, index, completed)
                if total_chunks is None:
                    raise SessionNotFoundError(f"No upload session for key {session_key}")
                if completed is not None:
                    logger.info(f"New upload replaces completed file {completed.final_path} [session={session_key}]")
                    self.reassembler.forget_completed(session_key)
                self.registry.begin(session_key, file_name or session_key, total_chunks, total_size)

            session = self.registry.get(session_key)
            if total_chunks is not None and total_chunks != session.total_chunks:
                raise InvalidMetadataError(
                    f"Chunk declares total_chunks={total_chunks} but session has "
                    f"{session.total_chunks} [session={session_key}]"
                )
            self.registry.validate_index(session, index)

            if checksum and not verify_checksum(payload, checksum):
                raise ChecksumMismatchError(
                    f"Checksum mismatch for chunk {index} [session={session_key}]"
                )

            self._validate_size(session, index, size)

        self.chunks.write_chunk(session_key, index, payload)

        with self.registry.lock(session_key):
            if not self.registry.exists(session_key):
                # session finished or discarded while the chunk was being written
                self._discard_chunk(session_key, index)
                completed = self.reassembler.completed_upload(session_key)
                if completed is None:
                    raise SessionNotFoundError(f"Upload session {session_key} no longer exists")
                return self._completed_result(session_key, index, completed)

            session = self.registry.get(session_key)
            try:
                learned_chunk_size = self._validate_size(session, index, size)
            except ChunkSizeMismatchError:
                # another chunk fixed the sizes while this one was being written
                if index not in session.received_chunks:
                    self._discard_chunk(session_key, index)
                raise

            newly_recorded = self.registry.record_chunk(session_key, index, size, learned_chunk_size)
            total, received = self.registry.get_received(session_key)

            if newly_recorded:
                logger.info(
                    f"Chunk received: {index} ({size} bytes), {len(received)}/{total} "
                    f"[session={session_key}]"
                )

            final_path = None
            if len(received) == total:
                final_path = self.reassembler.try_complete(session_key)

        return ReceiveResult(
            session_key=session_key,
            index=index,
            duplicate=not newly_recorded,
            received=len(received),
            total_chunks=total,
            completed=final_path is not None,
            final_path=final_path,
        )

    @staticmethod
    def _is_late_duplicate(
        completed: CompletedUpload,
        index: int,
        payload: bytes,
        total_chunks: Optional[int],
    ) -> bool:
        if total_chunks is not None and total_chunks != completed.total_chunks:
            return False
        return completed.holds(index, payload)

    @staticmethod
    def _completed_result(session_key: str, index: int, completed: CompletedUpload) -> ReceiveResult:
        return ReceiveResult(
            session_key=session_key,
            index=index,
            duplicate=True,
            received=completed.total_chunks,
            total_chunks=completed.total_chunks,
            completed=True,
            final_path=completed.final_path,
        )

    def _discard_chunk(self, session_key: str, index: int) -> None:
        try:
            self.chunks.delete_chunk(session_key, index)
        except OSError as e:
            logger.warning(f"Failed to remove orphan chunk {index} [session={session_key}]: {e}")

    def _validate_size(self, session: UploadSession, index: int, size: int) -> Optional[int]:
        """
        Enforce the fixed chunk size: every chunk but the last has the same
        length, the last is non-empty, no longer than that and matches the
        declared total.

        Checks only; nothing is recorded here.

        Returns:
            Chunk size learned from this chunk when the session has none yet
        """
        key = session.session_key
        total_chunks = session.total_chunks
        total_size = session.total_size
        chunk_size = session.chunk_size

        if size > self.max_chunk_size:
            raise ChunkSizeMismatchError(
                f"Chunk {index} is {size} bytes, above the {self.max_chunk_size} byte limit [session={key}]"
            )

        if index != total_chunks - 1:
            if size == 0:
                raise ChunkSizeMismatchError(f"Chunk {index} is empty [session={key}]")
            if chunk_size is not None:
                if size != chunk_size:
                    raise ChunkSizeMismatchError(
                        f"Chunk {index} is {size} bytes, expected {chunk_size} [session={key}]"
                    )
                return None
            if total_size > 0 and -(-total_size // size) != total_chunks:
                raise ChunkSizeMismatchError(
                    f"Chunk size {size} does not split {total_size} bytes into "
                    f"{total_chunks} chunks [session={key}]"
                )
            last = session.last_chunk_size
            if last is not None and last > size:
                raise ChunkSizeMismatchError(
                    f"Chunk {index} is {size} bytes, smaller than the {last} byte last chunk "
                    f"already received [session={key}]"
                )
            return size

        if size == 0 and not (total_chunks == 1 and total_size == 0):
            raise ChunkSizeMismatchError(f"Last chunk {index} is empty [session={key}]")

        if chunk_size is not None:
            if size > chunk_size:
                raise ChunkSizeMismatchError(
                    f"Last chunk {index} is {size} bytes, larger than chunk size {chunk_size} [session={key}]"
                )
            if total_size > 0:
                expected = total_size - (total_chunks - 1) * chunk_size
                if size != expected:
                    raise ChunkSizeMismatchError(
                        f"Last chunk {index} is {size} bytes, expected {expected} [session={key}]"
                    )
            return None

        if total_chunks == 1:
            if total_size > 0 and size != total_size:
                raise ChunkSizeMismatchError(
                    f"Single chunk is {size} bytes, expected {total_size} [session={key}]"
                )
            return None

        if total_size == 0:
            # checked against the chunk size once a non-last chunk fixes it
            return None

        rest = total_size - size
        if rest <= 0 or rest % (total_chunks - 1):
            raise ChunkSizeMismatchError(
                f"Last chunk {index} is {size} bytes, leaving {rest} bytes that cannot fill "
                f"{total_chunks - 1} equal chunks [session={key}]"
            )
        learned = rest // (total_chunks - 1)
        if size > learned:
            raise ChunkSizeMismatchError(
                f"Last chunk {index} is {size} bytes, larger than chunk size {learned} [session={key}]"
            )
        return learned
