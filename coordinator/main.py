"""Entry point for the upload coordinator service."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from coordinator.config import UPLOAD_CORS_ORIGINS, UPLOAD_HOST, UPLOAD_PORT
from coordinator.exceptions import (
    UploadError,
    InvalidIndexError,
    InvalidMetadataError,
    ChunkSizeMismatchError,
    ChecksumMismatchError,
    SessionNotFoundError,
    StorageError,
    InconsistentStateError,
)
from coordinator.routes.upload_routes import router as upload_router
from coordinator.service_locator import get_coordinator

logger = setup_logging('coordinator')

app = FastAPI(
    title="Chunked Upload Coordinator",
    description="Resumable chunked file-upload server",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=UPLOAD_CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Build the coordinator and recover interrupted uploads.
    """
    logger.info("Upload coordinator starting up...")

    coordinator = get_coordinator()
    report = coordinator.recover()

    logger.info(
        f"Upload state recovered: {report.sessions_loaded} sessions, "
        f"{report.sessions_completed} completed during recovery"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Upload coordinator shutting down...")


def _error_response(request: Request, exc: Exception, status_code: int, code: str) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    if status_code >= 500:
        logger.error(
            f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
    else:
        logger.warning(
            f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code}
    )


@app.exception_handler(InvalidIndexError)
async def invalid_index_handler(request: Request, exc: InvalidIndexError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "INVALID_INDEX")


@app.exception_handler(InvalidMetadataError)
async def invalid_metadata_handler(request: Request, exc: InvalidMetadataError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "INVALID_METADATA")


@app.exception_handler(ChunkSizeMismatchError)
async def chunk_size_mismatch_handler(request: Request, exc: ChunkSizeMismatchError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "CHUNK_SIZE_MISMATCH")


@app.exception_handler(ChecksumMismatchError)
async def checksum_mismatch_handler(request: Request, exc: ChecksumMismatchError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "CHECKSUM_MISMATCH")


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.info(
        f"Upload not started: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"message": "Upload not started", "detail": str(exc), "code": "SESSION_NOT_FOUND"}
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return _error_response(request, exc, status.HTTP_503_SERVICE_UNAVAILABLE, "STORAGE_ERROR")


@app.exception_handler(InconsistentStateError)
async def inconsistent_state_handler(request: Request, exc: InconsistentStateError):
    return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "INCONSISTENT_STATE")


@app.exception_handler(UploadError)
async def upload_exception_handler(request: Request, exc: UploadError):
    return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR")


app.include_router(upload_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Chunked Upload Coordinator API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Liveness endpoint for container healthchecks.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "coordinator"}


@app.get("/ready")
async def ready_check():
    """
    Readiness check endpoint.
    Verifies the output directory can be created and the registry is loaded.
    """
    coordinator = get_coordinator()

    try:
        coordinator.output_dir.mkdir(parents=True, exist_ok=True)
        storage_status = "ok"
    except OSError as e:
        storage_status = f"error: {str(e)}"

    ready = storage_status == "ok"
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "storage": storage_status,
            "active_sessions": coordinator.registry.count()
        }
    )


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "coordinator.main:app",
        host=UPLOAD_HOST,
        port=UPLOAD_PORT,
    )


if __name__ == "__main__":
    main()
