"""Pydantic schemas for upload endpoints."""

from typing import List, Optional
from pydantic import BaseModel, Field


class BeginUploadRequest(BaseModel):
    """Request model for starting a chunked upload."""
    file_name: str = Field(..., min_length=1)
    total_chunks: int
    total_size: int = 0
    chunk_size: Optional[int] = None


class BeginUploadResponse(BaseModel):
    """Response model for starting a chunked upload."""
    ready: bool
    session_key: str
    message: str = "Ready to receive chunks"


class UploadChunkResponse(BaseModel):
    """Response model for an accepted chunk."""
    accepted: bool
    index: int
    duplicate: bool
    received: int
    total_chunks: int
    completed: bool


class StreamChunkResponse(BaseModel):
    """Response model for a sequentially streamed chunk."""
    accepted: bool
    bytes_written: int
    completed: bool


class OneShotUploadResponse(BaseModel):
    """Response model for a one-shot upload."""
    status: str
    file_name: str
    size: int


class ResumeInfoResponse(BaseModel):
    """Response model for resume information."""
    file_name: str
    total_chunks: int
    received_chunks: List[int]
