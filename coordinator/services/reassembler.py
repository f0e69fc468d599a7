"""Completion detection and reassembly of finished upload sessions."""

import os
import tempfile
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common.logging_config import get_logger
from common.types import UploadSession
from coordinator.exceptions import InconsistentStateError, SessionNotFoundError, StorageError
from coordinator.session_registry import SessionRegistry
from coordinator.storage.blob_store import BlobNotFoundError
from coordinator.storage.chunk_store import ChunkStore

logger = get_logger(__name__)

COMPLETED_MEMORY_SIZE = 1024


@dataclass(frozen=True)
class CompletedUpload:
    """
    What is remembered about a session after its file was written.
    """
    final_path: Path
    total_chunks: int
    chunk_size: Optional[int]

    def holds(self, index: int, payload: bytes) -> bool:
        """
        Check whether the final file contains payload as chunk index.
        """
        if not 0 <= index < self.total_chunks:
            return False
        is_last = index == self.total_chunks - 1
        if self.chunk_size is None:
            if self.total_chunks > 1:
                return False
            offset = 0
        else:
            if not is_last and len(payload) != self.chunk_size:
                return False
            offset = index * self.chunk_size

        try:
            with open(self.final_path, 'rb') as f:
                f.seek(offset)
                stored = f.read(len(payload) + 1)
        except OSError:
            return False

        if is_last:
            return stored == payload
        return stored[:len(payload)] == payload


class Reassembler:
    """
    Combines the chunks of a complete session into the final file.

    The session lock is held from the completeness check through cleanup,
    so only one caller per session ever combines. Later callers find the
    session gone and get None.
    """

    def __init__(self, registry: SessionRegistry, chunks: ChunkStore, output_dir: Path):
        self.registry = registry
        self.chunks = chunks
        self.output_dir = Path(output_dir)
        self._completed: "OrderedDict[str, CompletedUpload]" = OrderedDict()
        self._completed_lock = threading.Lock()

    def output_path(self, file_name: str) -> Path:
        return self.output_dir / file_name

    def try_complete(self, session_key: str) -> Optional[Path]:
        """
        Reassemble a session if every chunk has been received.

        Args:
            session_key: Session to check

        Returns:
            Path of the final file if this call produced it, None otherwise

        Raises:
            InconsistentStateError: If chunk data is missing; session is kept
            StorageError: If the final file cannot be written; session is kept
        """
        with self.registry.lock(session_key):
            try:
                session = self.registry.get(session_key)
            except SessionNotFoundError:
                return None

            if not session.is_complete():
                return None

            final_path = self._combine(session)
            self._mark_completed(
                session_key, CompletedUpload(final_path, session.total_chunks, session.chunk_size)
            )
            self._cleanup(session)
            return final_path

    def _combine(self, session: UploadSession) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.output_path(session.file_name)

        logger.info(
            f"Reassembling {session.file_name} from {session.total_chunks} chunks "
            f"[session={session.session_key}]"
        )

        fd, tmp_name = tempfile.mkstemp(
            dir=self.output_dir, prefix=f".{session.file_name}.", suffix=".assembling"
        )
        written = 0
        try:
            with os.fdopen(fd, 'wb') as out:
                for index in range(session.total_chunks):
                    try:
                        for piece in self.chunks.iter_chunk(session.session_key, index):
                            out.write(piece)
                            written += len(piece)
                    except BlobNotFoundError:
                        raise InconsistentStateError(
                            f"Chunk {index} of {session.total_chunks} missing at combine time "
                            f"[session={session.session_key}]"
                        ) from None
                out.flush()
                os.fsync(out.fileno())

            if session.total_size > 0 and written != session.total_size:
                raise InconsistentStateError(
                    f"Reassembled {written} bytes but session declared {session.total_size} "
                    f"[session={session.session_key}]"
                )

            os.replace(tmp_name, final_path)
        except InconsistentStateError:
            self._discard(tmp_name)
            logger.error(
                f"Reassembly aborted, session left intact for investigation "
                f"[session={session.session_key}]",
                exc_info=True,
            )
            raise
        except OSError as e:
            self._discard(tmp_name)
            logger.error(f"Failed to write final file {final_path}: {e}", exc_info=True)
            raise StorageError(f"Failed to write final file for {session.file_name}: {e}") from e

        logger.info(f"The file is saved to: {final_path} ({written} bytes)")
        return final_path

    @staticmethod
    def _discard(tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {tmp_name}: {e}")

    def _cleanup(self, session: UploadSession) -> None:
        """
        Delete chunk artifacts and the registry entry. Failures are logged only.
        """
        try:
            failed = self.chunks.delete_session_chunks(session.session_key)
            if failed:
                logger.error(
                    f"Could not delete chunks {failed} after reassembly [session={session.session_key}]"
                )
        except OSError as e:
            logger.error(f"Chunk cleanup failed [session={session.session_key}]: {e}", exc_info=True)

        try:
            self.registry.delete(session.session_key)
        except StorageError as e:
            logger.error(f"Registry cleanup failed [session={session.session_key}]: {e}", exc_info=True)

    def _mark_completed(self, session_key: str, completed: CompletedUpload) -> None:
        with self._completed_lock:
            self._completed[session_key] = completed
            self._completed.move_to_end(session_key)
            while len(self._completed) > COMPLETED_MEMORY_SIZE:
                self._completed.popitem(last=False)

    def completed_upload(self, session_key: str) -> Optional[CompletedUpload]:
        """
        Record of a session reassembled by this process, if remembered.
        """
        with self._completed_lock:
            return self._completed.get(session_key)

    def forget_completed(self, session_key: str) -> None:
        with self._completed_lock:
            self._completed.pop(session_key, None)
