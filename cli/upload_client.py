"""Async HTTP client for the upload coordinator API."""

import asyncio
import uuid
from typing import Optional
from urllib.parse import quote

import httpx

from common.logging_config import get_logger
from common.types import ResumeInfo
from cli.config import Config
from cli.exceptions import ChunkUploadError, ClientError, ProbeError, UploadRejectedError

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429}


class UploadClient:
    """HTTP client for the upload API with retry logic and error handling."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize upload client.

        Args:
            config: Configuration instance
            transport: Optional transport (used to plug in mock or in-process servers)
        """
        self.config = config
        self.session = httpx.AsyncClient(
            base_url=config.get_base_url(),
            timeout=config.get_timeout(),
            transport=transport,
        )
        logger.info(f"Initialized UploadClient [base_url={config.get_base_url()}]")

    async def close(self) -> None:
        await self.session.aclose()

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx/408/429 responses and network failures.

        Timeouts take the same path as other network failures.

        Args:
            method: HTTP method (GET, POST, ...)
            endpoint: API endpoint path
            max_retries: Max retry attempts (uses config default if None)
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            HTTP response object (any status once retries are exhausted)

        Raises:
            ClientError: If every attempt failed at the network level
        """
        retry_config = self.config.get_retry_config()
        max_retries = max_retries if max_retries is not None else retry_config['max_retries']
        backoff = retry_config['retry_backoff_multiplier']
        base_delay = retry_config['retry_base_delay']

        request_id = str(uuid.uuid4())
        headers = dict(kwargs.pop('headers', None) or {})
        headers['X-Request-ID'] = request_id

        last_exception = None

        for attempt in range(max_retries + 1):
            delay = base_delay * (backoff ** attempt)
            try:
                response = await self.session.request(method, endpoint, headers=headers, **kwargs)

                logger.debug(
                    f"Response received: {method} {endpoint} status={response.status_code} [request_id={request_id}]"
                )

                retryable = response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES
                if retryable and attempt < max_retries:
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} status={response.status_code}, retrying in {delay}s [request_id={request_id}]"
                    )
                    await asyncio.sleep(delay)
                    continue

                return response

            except httpx.TransportError as e:
                last_exception = e
                if attempt < max_retries:
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} error={type(e).__name__}, retrying in {delay}s [request_id={request_id}]"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(
                    f"Network error (max retries exceeded): {method} {endpoint} error={e!r} [request_id={request_id}]"
                )

        if isinstance(last_exception, httpx.TimeoutException):
            raise ClientError("Request timed out. Server may be overloaded.") from last_exception
        raise ClientError(f"Cannot reach upload server: {last_exception!r}") from last_exception

    @staticmethod
    def _format_error(response: httpx.Response) -> str:
        """
        Map HTTP errors to readable messages.
        """
        try:
            error_data = response.json()
            detail = error_data.get('detail') or error_data.get('message') or 'Unknown error'
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text or 'Unknown error'
            code = 'UNKNOWN'

        return f"{detail} (status={response.status_code}, code={code})"

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get('code')
        except ValueError:
            return None

    async def resume_info(self, file_name: str) -> Optional[ResumeInfo]:
        """
        Ask the server what it already has for an upload.

        Returns:
            ResumeInfo, or None if the upload has not been started (404)

        Raises:
            ProbeError: On network failure or any other response
        """
        try:
            response = await self._request_with_retry('GET', f"/upload/{quote(file_name, safe='')}/info")
        except ClientError as e:
            raise ProbeError(f"Resume probe failed: {e}") from e

        if response.status_code == 404:
            logger.info(f"No upload session on server for {file_name}")
            return None

        if response.status_code != 200:
            raise ProbeError(
                f"Resume probe failed: {self._format_error(response)}",
                status_code=response.status_code,
                code=self._error_code(response),
            )

        data = response.json()
        return ResumeInfo(
            file_name=data['file_name'],
            total_chunks=int(data['total_chunks']),
            received_chunks=[int(i) for i in data['received_chunks']],
        )

    async def begin_upload(
        self,
        file_name: str,
        total_chunks: int,
        total_size: int,
        chunk_size: Optional[int] = None,
    ) -> str:
        """
        Create the server-side session for a chunked upload.

        Returns:
            Session key assigned by the server
        """
        payload = {
            'file_name': file_name,
            'total_chunks': total_chunks,
            'total_size': total_size,
            'chunk_size': chunk_size,
        }
        response = await self._request_with_retry('POST', '/upload/begin', json=payload)

        if response.status_code != 200:
            error_cls = UploadRejectedError if 400 <= response.status_code < 500 else ClientError
            raise error_cls(
                f"Begin upload failed: {self._format_error(response)}",
                status_code=response.status_code,
                code=self._error_code(response),
            )

        data = response.json()
        logger.info(f"Upload session ready for {file_name} [session={data['session_key']}]")
        return data['session_key']

    async def upload_chunk(
        self,
        file_name: str,
        index: int,
        data: bytes,
        total_chunks: int,
        total_size: int,
        checksum: Optional[str] = None,
    ) -> dict:
        """
        Upload one chunk of a chunked upload.

        Returns:
            Parsed acknowledgement from the server

        Raises:
            UploadRejectedError: If the server rejected the chunk as invalid
            ChunkUploadError: If the chunk could not be delivered
        """
        form = {
            'file_name': file_name,
            'index': str(index),
            'total_chunks': str(total_chunks),
            'total_size': str(total_size),
        }
        if checksum:
            form['checksum'] = checksum

        try:
            response = await self._request_with_retry(
                'POST',
                '/upload/chunk',
                files={'file': (f"{file_name}.{index}", data, 'application/octet-stream')},
                data=form,
            )
        except ClientError as e:
            raise ChunkUploadError(f"Chunk {index} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        error_cls = UploadRejectedError if 400 <= response.status_code < 500 else ChunkUploadError
        raise error_cls(
            f"Chunk {index} failed: {self._format_error(response)}",
            status_code=response.status_code,
            code=self._error_code(response),
        )

    async def stream_chunk(self, file_name: str, data: bytes, is_last: bool, offset: int) -> dict:
        """
        Append one piece to a sequential upload.

        Raises:
            UploadRejectedError: If the server rejected the piece as invalid
            ChunkUploadError: If the piece could not be delivered
        """
        headers = {
            'File-Name': file_name,
            'Is-Last-Chunk': 'true' if is_last else 'false',
            'Upload-Offset': str(offset),
            'Content-Type': 'application/octet-stream',
        }
        try:
            response = await self._request_with_retry('POST', '/upload/stream', content=data, headers=headers)
        except ClientError as e:
            raise ChunkUploadError(f"Piece at offset {offset} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        error_cls = UploadRejectedError if 400 <= response.status_code < 500 else ChunkUploadError
        raise error_cls(
            f"Piece at offset {offset} failed: {self._format_error(response)}",
            status_code=response.status_code,
            code=self._error_code(response),
        )

    async def upload_whole(self, file_name: str, data: bytes) -> dict:
        """
        Upload a file in a single request.

        Raises:
            UploadRejectedError: If the server rejected the file
            ChunkUploadError: If the upload could not be delivered
        """
        try:
            response = await self._request_with_retry(
                'POST',
                '/upload',
                files={'file': (file_name, data, 'application/octet-stream')},
                data={'file_name': file_name},
            )
        except ClientError as e:
            raise ChunkUploadError(f"Upload of {file_name} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        error_cls = UploadRejectedError if 400 <= response.status_code < 500 else ChunkUploadError
        raise error_cls(
            f"Upload of {file_name} failed: {self._format_error(response)}",
            status_code=response.status_code,
            code=self._error_code(response),
        )
