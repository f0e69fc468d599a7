"""One-shot uploads and the sequential, metadata-free streaming variant."""

import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from common.constants import PARTIAL_SUFFIX
from common.logging_config import get_logger
from coordinator.exceptions import InvalidMetadataError, StorageError
from coordinator.utils import KeyedLocks

logger = get_logger(__name__)


class SequentialUploadService:
    """
    Writes files that arrive whole or as strictly ordered pieces.

    Streamed pieces are appended to ``<name>.part`` in the output directory
    and renamed onto ``<name>`` when the client flags the last piece, so a
    reader never sees a half-written final file.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self._locks = KeyedLocks()

    def partial_path(self, file_name: str) -> Path:
        return self.output_dir / f"{file_name}{PARTIAL_SUFFIX}"

    def append_chunk(
        self,
        file_name: str,
        data: bytes,
        is_last: bool,
        offset: Optional[int] = None,
    ) -> Tuple[int, Optional[Path]]:
        """
        Append one piece of a sequential upload.

        When the client sends the byte offset of the piece, a partial file
        longer than that offset is truncated first, so retrying a piece whose
        response was lost does not duplicate data.

        Args:
            file_name: Normalized target file name
            data: Piece payload
            is_last: True when this is the final piece
            offset: Byte offset of the piece in the file, if known

        Returns:
            Tuple of (bytes written so far, final path if the upload completed)

        Raises:
            InvalidMetadataError: If offset is negative or beyond the bytes received
            StorageError: If the piece cannot be written
        """
        partial = self.partial_path(file_name)

        with self._locks.hold(file_name):
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                if offset is not None:
                    self._rewind(partial, offset)
                with open(partial, 'ab') as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                written = partial.stat().st_size

                if not is_last:
                    logger.debug(f"Appended {len(data)} bytes to {partial} ({written} total)")
                    return written, None

                final_path = self.output_dir / file_name
                os.replace(partial, final_path)
            except OSError as e:
                logger.error(f"Error saving the chunk for {file_name}: {e}")
                raise StorageError(f"Error saving the chunk: {e}") from e

        logger.info(f"The file is saved to: {final_path} ({written} bytes)")
        return written, final_path

    def write_whole(self, file_name: str, data: bytes) -> Path:
        """
        Store a file uploaded in one shot.

        Raises:
            StorageError: If the file cannot be written
        """
        final_path = self.output_dir / file_name

        with self._locks.hold(file_name):
            tmp_name = None
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.output_dir, prefix=f".{file_name}.", suffix=".tmp")
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, final_path)
            except OSError as e:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                logger.error(f"Error writing file: {final_path}, Error: {e}")
                raise StorageError(f"Error writing file {file_name}: {e}") from e

        logger.info(f"The file is saved to: {final_path} ({len(data)} bytes)")
        return final_path

    @staticmethod
    def _rewind(partial: Path, offset: int) -> None:
        current = partial.stat().st_size if partial.exists() else 0
        if offset < 0 or offset > current:
            raise InvalidMetadataError(
                f"Offset {offset} does not match {current} bytes received for {partial.name}"
            )
        if offset < current:
            logger.info(f"Truncating {partial} from {current} to {offset} bytes for a resent piece")
            with open(partial, 'r+b') as f:
                f.truncate(offset)
