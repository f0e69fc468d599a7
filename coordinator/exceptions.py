"""Custom exception classes for the upload coordinator."""


class UploadError(Exception):
    """
    Base exception class for all upload coordinator errors.
    """
    pass


class InvalidIndexError(UploadError):
    """
    Raised when a chunk index falls outside [0, total_chunks).
    """
    pass


class InvalidMetadataError(UploadError):
    """
    Raised when upload metadata (chunk count, size, file name) is invalid.
    """
    pass


class ChunkSizeMismatchError(UploadError):
    """
    Raised when a chunk's length breaks the fixed chunk size of its session.
    """
    pass


class ChecksumMismatchError(UploadError):
    """
    Raised when a chunk payload does not match the checksum sent with it.
    """
    pass


class SessionNotFoundError(UploadError):
    """
    Raised when no session exists for a key. Signals "not yet started".
    """
    pass


class StorageError(UploadError):
    """
    Raised when reading or writing the backing store fails. Retry-safe.
    """
    pass


class InconsistentStateError(UploadError):
    """
    Raised when a complete session is missing chunk data at combine time.
    """
    pass
