"""Keyed blob storage backends: local filesystem and in-memory."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List

from common.constants import STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger

logger = get_logger(__name__)


class BlobNotFoundError(KeyError):
    """
    Raised when a requested blob key does not exist.
    """
    pass


class BlobStore(ABC):
    """
    Capability set over keyed blobs.

    Keys are '/'-separated relative paths such as ``chunks/<session>/3.chk``.
    ``put`` must be atomic: a concurrent ``get`` sees the old content or the
    new content, never a partial write.
    """

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    def iter_pieces(self, key: str, piece_size: int = STREAM_PIECE_SIZE_BYTES) -> Iterator[bytes]:
        """
        Stream a blob in pieces.

        Args:
            key: Blob key
            piece_size: Size of each piece in bytes (default 64KB)

        Yields:
            Blob data pieces
        """
        data = self.get(key)
        for offset in range(0, len(data), piece_size):
            yield data[offset:offset + piece_size]


def _validate_key(key: str) -> str:
    parts = key.split("/")
    if not key or any(part in ("", ".", "..") for part in parts):
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


class LocalBlobStore(BlobStore):
    """
    Blob store rooted at a directory on the local filesystem.
    """

    def __init__(self, root: Path):
        """
        Initialize store.

        Args:
            root: Directory that holds all blobs
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*_validate_key(key).split("/"))

    def put(self, key: str, data: bytes) -> None:
        """
        Write blob data to disk atomically.

        Args:
            key: Blob key
            data: Raw bytes

        Raises:
            OSError: If write operation fails
        """
        path = self._path(key)
        for attempt in range(2):
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
                break
            except FileNotFoundError:
                # directory pruned by a concurrent delete
                if attempt == 1:
                    raise

        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get(self, key: str) -> bytes:
        """
        Read entire blob from disk.

        Raises:
            BlobNotFoundError: If blob does not exist
            OSError: If read operation fails
        """
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None

    def iter_pieces(self, key: str, piece_size: int = STREAM_PIECE_SIZE_BYTES) -> Iterator[bytes]:
        path = self._path(key)
        try:
            f = open(path, 'rb')
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None
        with f:
            while True:
                piece = f.read(piece_size)
                if not piece:
                    break
                yield piece

    def delete(self, key: str) -> bool:
        """
        Delete blob from disk, pruning its directory when it becomes empty.

        Returns:
            True if blob was deleted, False if it didn't exist
        """
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False

        parent = path.parent
        while parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def list(self, prefix: str = "") -> List[str]:
        """
        List blob keys under a prefix.

        Returns:
            Sorted list of keys; temporary write files are skipped
        """
        base = self.root.joinpath(*prefix.strip("/").split("/")) if prefix.strip("/") else self.root
        if not base.exists():
            return []

        keys = []
        for path in base.rglob("*"):
            if path.is_file() and not path.name.startswith("."):
                keys.append(path.relative_to(self.root).as_posix())
        return sorted(keys)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


class InMemoryBlobStore(BlobStore):
    """
    Thread-safe in-memory blob store. Used under test and for ephemeral runs.
    """

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes) -> None:
        _validate_key(key)
        with self._lock:
            self._blobs[key] = bytes(data)

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[key]
            except KeyError:
                raise BlobNotFoundError(key) from None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._blobs.pop(key, None) is not None

    def list(self, prefix: str = "") -> List[str]:
        prefix = prefix.strip("/")
        with self._lock:
            keys = list(self._blobs)
        if prefix:
            keys = [k for k in keys if k == prefix or k.startswith(prefix + "/")]
        return sorted(keys)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs
