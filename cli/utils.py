"""Utility functions for chunk planning and progress display."""

import sys
from pathlib import Path

GREEN = "\033[32m"
RESET = "\033[0m"


def count_chunks(file_size: int, chunk_size: int) -> int:
    """
    Number of chunks needed for a file. An empty file is one empty chunk.

    Args:
        file_size: File size in bytes
        chunk_size: Fixed chunk size in bytes

    Returns:
        Chunk count (at least 1)

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return max(1, -(-file_size // chunk_size))


def read_chunk(file_path: Path, index: int, chunk_size: int) -> bytes:
    """
    Read the bytes of one chunk from the source file.

    Args:
        file_path: Source file
        index: Chunk index
        chunk_size: Fixed chunk size in bytes

    Returns:
        Bytes at [index * chunk_size, index * chunk_size + chunk_size)
    """
    with open(file_path, 'rb') as f:
        f.seek(index * chunk_size)
        return f.read(chunk_size)


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


class ProgressPrinter:
    """Prints upload progress on a single stdout line."""

    def __init__(self, filename: str, file_size: int):
        self.filename = filename
        self.file_size = file_size

    def __call__(self, progress: float) -> None:
        uploaded = int(self.file_size * progress)
        sys.stdout.write(
            f"\rUploading {self.filename}: {format_file_size(uploaded)} / "
            f"{format_file_size(self.file_size)} ({GREEN}{progress * 100:.1f}%{RESET})"
        )
        if progress >= 1.0:
            sys.stdout.write('\n')
        sys.stdout.flush()
