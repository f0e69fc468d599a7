"""Pydantic schemas for API requests and responses."""

from coordinator.schemas.uploads import (
    BeginUploadRequest,
    BeginUploadResponse,
    UploadChunkResponse,
    StreamChunkResponse,
    OneShotUploadResponse,
    ResumeInfoResponse,
)
from coordinator.schemas.common import ErrorResponse, NotFoundResponse

__all__ = [
    "BeginUploadRequest",
    "BeginUploadResponse",
    "UploadChunkResponse",
    "StreamChunkResponse",
    "OneShotUploadResponse",
    "ResumeInfoResponse",
    "ErrorResponse",
    "NotFoundResponse",
]
