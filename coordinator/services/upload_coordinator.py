"""Upload coordinator: wires storage, registry, receiver and reassembler together."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from common.constants import MAX_CHUNK_SIZE_BYTES
from common.logging_config import get_logger
from common.types import ResumeInfo, UploadSession
from coordinator.exceptions import UploadError
from coordinator.services.chunk_receiver import ChunkReceiver, ReceiveResult
from coordinator.services.reassembler import Reassembler
from coordinator.services.resume_query import ResumeQuery
from coordinator.services.sequential_upload import SequentialUploadService
from coordinator.session_registry import SessionRegistry
from coordinator.storage.blob_store import BlobStore, LocalBlobStore
from coordinator.storage.chunk_store import ChunkStore
from coordinator.utils import derive_session_key, normalize_file_name

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecoveryReport:
    """
    Summary of startup recovery.
    """
    sessions_loaded: int
    chunks_forgotten: int
    sessions_completed: int
    sessions_failed: int


class UploadCoordinator:
    """
    Entry point for the boundary operations of the upload API.

    File names are normalized to their base name and mapped to session keys
    here; the components below only see session keys.
    """

    def __init__(
        self,
        blobs: BlobStore,
        output_dir: Path,
        max_chunk_size: int = MAX_CHUNK_SIZE_BYTES,
    ):
        """
        Initialize the coordinator.

        Args:
            blobs: Store for chunk payloads and session snapshots
            output_dir: Directory receiving finished files
            max_chunk_size: Largest accepted chunk in bytes
        """
        self.blobs = blobs
        self.output_dir = Path(output_dir)
        self.registry = SessionRegistry(blobs)
        self.chunks = ChunkStore(blobs)
        self.reassembler = Reassembler(self.registry, self.chunks, self.output_dir)
        self.receiver = ChunkReceiver(self.registry, self.chunks, self.reassembler, max_chunk_size)
        self.resume = ResumeQuery(self.registry)
        self.sequential = SequentialUploadService(self.output_dir)

    @classmethod
    def from_config(cls) -> "UploadCoordinator":
        """
        Build a coordinator backed by the local filesystem paths from config.
        """
        from coordinator.config import UPLOAD_DATA_DIR, UPLOAD_MAX_CHUNK_SIZE, UPLOAD_OUTPUT_DIR

        return cls(
            blobs=LocalBlobStore(Path(UPLOAD_DATA_DIR)),
            output_dir=Path(UPLOAD_OUTPUT_DIR),
            max_chunk_size=UPLOAD_MAX_CHUNK_SIZE,
        )

    def begin_upload(
        self,
        file_name: str,
        total_chunks: int,
        total_size: int = 0,
        chunk_size: Optional[int] = None,
    ) -> UploadSession:
        name = normalize_file_name(file_name)
        session_key = derive_session_key(name)
        self.reassembler.forget_completed(session_key)
        return self.registry.begin(session_key, name, total_chunks, total_size, chunk_size)

    def upload_chunk(
        self,
        file_name: str,
        index: int,
        payload: bytes,
        total_chunks: Optional[int] = None,
        total_size: int = 0,
        checksum: Optional[str] = None,
    ) -> ReceiveResult:
        name = normalize_file_name(file_name)
        return self.receiver.receive(
            derive_session_key(name),
            index,
            payload,
            file_name=name,
            total_chunks=total_chunks,
            total_size=total_size,
            checksum=checksum,
        )

    def resume_info(self, file_name: str) -> ResumeInfo:
        """
        Raises:
            SessionNotFoundError: If the upload has not been started
        """
        return self.resume.resume_info(derive_session_key(file_name))

    def append_chunk(
        self,
        file_name: str,
        data: bytes,
        is_last: bool,
        offset: Optional[int] = None,
    ) -> Tuple[int, Optional[Path]]:
        return self.sequential.append_chunk(normalize_file_name(file_name), data, is_last, offset)

    def upload_whole(self, file_name: str, data: bytes) -> Path:
        return self.sequential.write_whole(normalize_file_name(file_name), data)

    def recover(self) -> RecoveryReport:
        """
        Restore upload state after a restart.

        Reloads session snapshots, forgets received indices whose chunk data
        is gone so clients upload them again, and reassembles sessions that
        were complete when the process stopped.

        Returns:
            RecoveryReport with counts of what was done
        """
        loaded = self.registry.load()
        forgotten = 0
        completed = 0
        failed = 0

        for session_key in self.registry.session_keys():
            try:
                _, received = self.registry.get_received(session_key)
                stored = set(self.chunks.list_indices(session_key))
                missing = received - stored
                if missing:
                    logger.warning(
                        f"Session lost data for chunks {sorted(missing)}, they will be re-requested "
                        f"[session={session_key}]"
                    )
                    self.registry.forget_chunks(session_key, missing)
                    forgotten += len(missing)

                if self.registry.is_complete(session_key):
                    if self.reassembler.try_complete(session_key) is not None:
                        completed += 1
            except UploadError as e:
                failed += 1
                logger.error(f"Recovery failed [session={session_key}]: {e}", exc_info=True)

        logger.info(
            f"Recovery finished: loaded={loaded} forgotten_chunks={forgotten} "
            f"completed={completed} failed={failed}"
        )
        return RecoveryReport(
            sessions_loaded=loaded,
            chunks_forgotten=forgotten,
            sessions_completed=completed,
            sessions_failed=failed,
        )
