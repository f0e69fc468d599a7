"""Client-side exception classes."""

from typing import Optional


class ClientError(Exception):
    """
    Base exception for upload client failures.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ProbeError(ClientError):
    """
    Raised when the resume probe fails for a reason other than "not started".
    """
    pass


class ChunkUploadError(ClientError):
    """
    Raised when a chunk could not be delivered after all retries.
    """
    pass


class UploadRejectedError(ClientError):
    """
    Raised when the server rejects a request as invalid. Not retried.
    """
    pass
