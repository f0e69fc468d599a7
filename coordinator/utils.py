"""Utility helper functions for the upload coordinator."""

import hashlib
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import PurePosixPath, PureWindowsPath
from typing import Dict, Iterator, List

from coordinator.exceptions import InvalidMetadataError

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        Current timestamp as ISO format string
    """
    return datetime.now(timezone.utc).isoformat()


def normalize_file_name(file_name: str) -> str:
    """
    Reduce a client-supplied file name to its base name.

    Args:
        file_name: Name as sent by the client, possibly with a path

    Returns:
        Base name safe to place inside the output directory

    Raises:
        InvalidMetadataError: If nothing usable remains
    """
    if file_name is None:
        raise InvalidMetadataError("File name is required")

    name = PureWindowsPath(PurePosixPath(file_name.strip()).name).name
    if name in ("", ".", "..") or "\x00" in name:
        raise InvalidMetadataError(f"Invalid file name: {file_name!r}")
    return name


def derive_session_key(file_name: str) -> str:
    """
    Derive the session key for a logical file name.

    The readable part is the sanitized stem; the digest of the full base
    name keeps names that differ only by extension apart.

    Args:
        file_name: Logical file name

    Returns:
        Session key usable as a storage key component
    """
    name = normalize_file_name(file_name)
    stem = name.split(".")[0] or "untitled"
    stem = _UNSAFE_CHARS.sub("_", stem)[:64]
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
    return f"{stem}-{digest}"


class KeyedLocks:
    """
    Re-entrant locks handed out per key.

    An entry lives only while some thread holds or waits on it, so the
    table does not grow with every key ever seen.
    """

    def __init__(self):
        self._entries: Dict[str, List] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
