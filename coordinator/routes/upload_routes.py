"""Upload API routes."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile, status

from common.logging_config import get_logger
from coordinator.schemas.common import ErrorResponse, NotFoundResponse
from coordinator.schemas.uploads import (
    BeginUploadRequest,
    BeginUploadResponse,
    OneShotUploadResponse,
    ResumeInfoResponse,
    StreamChunkResponse,
    UploadChunkResponse,
)
from coordinator.service_locator import get_coordinator
from coordinator.services.upload_coordinator import UploadCoordinator

logger = get_logger(__name__)

router = APIRouter(prefix="/upload", tags=["Upload"])

TRUTHY_HEADER_VALUES = {"1", "true", "yes", "on"}


@router.post("", response_model=OneShotUploadResponse)
async def upload_one_shot(
    file: UploadFile = File(...),
    file_name: Optional[str] = Form(None),
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Upload a whole file in a single request.

    Parameters:
        - file: File to upload (multipart/form-data)
        - file_name: Optional name to store the file under (defaults to the upload's filename)

    Returns:
        - status, stored file name and size

    Raises:
        - 400: Invalid file name
        - 503: Storage failure
    """
    data = await file.read()
    path = await asyncio.to_thread(coordinator.upload_whole, file_name or file.filename, data)
    logger.debug(f"One-shot upload stored: {path.name} ({len(data)} bytes)")

    return OneShotUploadResponse(status="success", file_name=path.name, size=len(data))


@router.post("/begin", response_model=BeginUploadResponse)
async def begin_upload(
    request: BeginUploadRequest,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Create or refresh the session for a chunked upload. Safe to repeat.

    Raises:
        - 400: Invalid metadata (total_chunks <= 0, negative size, bad name)
        - 503: Storage failure
    """
    session = await asyncio.to_thread(
        coordinator.begin_upload,
        request.file_name,
        request.total_chunks,
        request.total_size,
        request.chunk_size,
    )

    logger.debug(f"Begin upload acknowledged for {request.file_name} [session={session.session_key}]")

    return BeginUploadResponse(ready=True, session_key=session.session_key)


@router.post(
    "/chunk",
    response_model=UploadChunkResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": NotFoundResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)
async def upload_chunk(
    file: UploadFile = File(...),
    file_name: str = Form(...),
    index: int = Form(...),
    total_chunks: Optional[int] = Form(None),
    total_size: int = Form(0),
    checksum: Optional[str] = Form(None),
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Upload one chunk of a chunked upload, in any order.

    Parameters:
        - file: Chunk payload (multipart/form-data)
        - file_name: Logical file name
        - index: Chunk index in [0, total_chunks)
        - total_chunks: Chunk count; creates the session if it does not exist
        - total_size: File size in bytes, used when creating the session
        - checksum: Optional SHA-256 hex digest of the payload

    Raises:
        - 400: Invalid index, chunk size or checksum
        - 404: No session and no total_chunks to create one
        - 500: Reassembly found inconsistent state
        - 503: Storage failure (retry the same index)
    """
    payload = await file.read()
    result = await asyncio.to_thread(
        coordinator.upload_chunk,
        file_name,
        index,
        payload,
        total_chunks,
        total_size,
        checksum,
    )

    return UploadChunkResponse(
        accepted=True,
        index=result.index,
        duplicate=result.duplicate,
        received=result.received,
        total_chunks=result.total_chunks,
        completed=result.completed,
    )


@router.post("/stream", response_model=StreamChunkResponse)
async def stream_chunk(
    request: Request,
    file_name: str = Header(..., alias="File-Name"),
    is_last_chunk: Optional[str] = Header(None, alias="Is-Last-Chunk"),
    upload_offset: Optional[int] = Header(None, alias="Upload-Offset"),
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Append the raw request body to a sequential upload.

    Headers:
        - File-Name: Target file name
        - Is-Last-Chunk: "true" on the final piece
        - Upload-Offset: Optional byte offset of the piece; a resent piece replaces the tail

    Raises:
        - 400: Invalid file name or offset
        - 503: Storage failure
    """
    data = await request.body()
    is_last = (is_last_chunk or "").strip().lower() in TRUTHY_HEADER_VALUES

    written, final_path = await asyncio.to_thread(
        coordinator.append_chunk, file_name, data, is_last, upload_offset
    )

    return StreamChunkResponse(accepted=True, bytes_written=written, completed=final_path is not None)


@router.get(
    "/{file_name}/info",
    response_model=ResumeInfoResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": NotFoundResponse, "description": "Upload not started"}},
)
async def resume_info(
    file_name: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Report which chunks of an upload have been received.

    Raises:
        - 404: Upload not started (client should call /upload/begin)
    """
    info = await asyncio.to_thread(coordinator.resume_info, file_name)

    return ResumeInfoResponse(
        file_name=info.file_name,
        total_chunks=info.total_chunks,
        received_chunks=info.received_chunks,
    )
