"""Client-side upload scheduler: probing, bootstrapping, resuming and bounded-concurrency dispatch."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set

from common.checksum import compute_checksum
from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_MAX_WORKERS
from common.logging_config import get_logger
from cli.exceptions import ClientError, ProbeError
from cli.upload_client import UploadClient
from cli.utils import count_chunks, read_chunk

logger = get_logger(__name__)


class UploadMode(str, Enum):
    ONE_SHOT = "one-shot"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class UploadState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    BOOTSTRAPPING = "bootstrapping"
    RESUMING = "resuming"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS: Dict[UploadState, Set[UploadState]] = {
    UploadState.IDLE: {UploadState.PROBING, UploadState.IN_FLIGHT, UploadState.FAILED},
    UploadState.PROBING: {UploadState.BOOTSTRAPPING, UploadState.RESUMING, UploadState.FAILED},
    UploadState.BOOTSTRAPPING: {UploadState.IN_FLIGHT, UploadState.FAILED},
    UploadState.RESUMING: {UploadState.IN_FLIGHT, UploadState.FAILED},
    UploadState.IN_FLIGHT: {UploadState.COMPLETED, UploadState.FAILED, UploadState.CANCELLED},
    UploadState.COMPLETED: set(),
    UploadState.FAILED: set(),
    UploadState.CANCELLED: set(),
}


@dataclass
class UploadResult:
    """
    Final outcome of one scheduler run.
    """
    file_name: str
    mode: UploadMode
    state: UploadState
    total_chunks: int
    acknowledged: int
    dispatched: List[int] = field(default_factory=list)
    error: Optional[str] = None


class UploadScheduler:
    """
    Drives one file upload through the server API.

    In parallel mode the scheduler probes the server for prior progress,
    starts or resumes the session and hands the outstanding chunk indices
    to a fixed number of worker tasks. Chunks complete in any order.
    Transient failures are retried with backoff by the client; a chunk that
    still fails moves the upload to FAILED and stops further dispatch.
    ``cancel()`` stops dispatch without recalling requests already sent.
    """

    def __init__(
        self,
        client: UploadClient,
        file_path: Path,
        file_name: Optional[str] = None,
        mode: UploadMode = UploadMode.PARALLEL,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress_callback: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            client: Upload API client
            file_path: Source file on disk
            file_name: Name to upload under (defaults to the source base name)
            mode: One of the UploadMode variants
            chunk_size: Fixed chunk size in bytes
            max_workers: Maximum simultaneous chunk uploads (parallel mode)
            progress_callback: Called with the acknowledged fraction after each chunk
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")

        self.client = client
        self.file_path = Path(file_path)
        self.file_name = file_name or self.file_path.name
        self.mode = UploadMode(mode)
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.progress_callback = progress_callback

        self.file_size = 0
        self.total_chunks = 0
        self.dispatched: List[int] = []
        self.error: Optional[str] = None

        self._state = UploadState.IDLE
        self._acknowledged: Set[int] = set()
        self._cancel_event = asyncio.Event()

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def progress(self) -> float:
        """
        Fraction of chunks acknowledged. Never decreases.
        """
        if self.total_chunks == 0:
            return 0.0
        return len(self._acknowledged) / self.total_chunks

    def cancel(self) -> None:
        """
        Stop dispatching new chunks. The upload stays resumable.
        """
        if not self._cancel_event.is_set():
            logger.info(f"Cancelling upload of {self.file_name}")
            self._cancel_event.set()

    def _transition(self, new_state: UploadState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid upload state transition {self._state.value} -> {new_state.value}")
        logger.debug(f"Upload {self.file_name}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _acknowledge(self, index: int) -> None:
        if index in self._acknowledged:
            return
        self._acknowledged.add(index)
        if self.progress_callback is not None:
            self.progress_callback(self.progress)

    async def run(self) -> UploadResult:
        """
        Run the upload to a terminal state.

        Returns:
            UploadResult with the terminal state and counts
        """
        if self._state is not UploadState.IDLE:
            raise RuntimeError("UploadScheduler.run() may only be called once")

        self.file_size = self.file_path.stat().st_size
        self.total_chunks = count_chunks(self.file_size, self.chunk_size)

        logger.info(
            f"Uploading {self.file_name} ({self.file_size} bytes, {self.total_chunks} chunks) "
            f"mode={self.mode.value}"
        )

        try:
            if self.mode is UploadMode.ONE_SHOT:
                await self._run_one_shot()
            elif self.mode is UploadMode.SEQUENTIAL:
                await self._run_sequential()
            else:
                await self._run_parallel()
        except (ClientError, OSError) as e:
            self.error = str(e)
            logger.error(f"Upload of {self.file_name} failed in state {self._state.value}: {e}")
            self._transition(UploadState.FAILED)
            return self._result()

        if len(self._acknowledged) == self.total_chunks:
            self._transition(UploadState.COMPLETED)
            logger.info(f"Upload of {self.file_name} completed")
        else:
            self._transition(UploadState.CANCELLED)
            logger.info(
                f"Upload of {self.file_name} cancelled after {len(self._acknowledged)}/{self.total_chunks} chunks"
            )
        return self._result()

    def _result(self) -> UploadResult:
        return UploadResult(
            file_name=self.file_name,
            mode=self.mode,
            state=self._state,
            total_chunks=self.total_chunks,
            acknowledged=len(self._acknowledged),
            dispatched=list(self.dispatched),
            error=self.error,
        )

    async def _run_parallel(self) -> None:
        self._transition(UploadState.PROBING)
        info = await self.client.resume_info(self.file_name)

        if info is None:
            self._transition(UploadState.BOOTSTRAPPING)
            await self.client.begin_upload(
                self.file_name, self.total_chunks, self.file_size, self.chunk_size
            )
            received: Set[int] = set()
        else:
            self._transition(UploadState.RESUMING)
            if info.total_chunks != self.total_chunks:
                raise ProbeError(
                    f"Server session for {self.file_name} expects {info.total_chunks} chunks, "
                    f"local file has {self.total_chunks}"
                )
            received = {i for i in info.received_chunks if 0 <= i < self.total_chunks}
            logger.info(f"Resuming {self.file_name}: server already has {len(received)}/{self.total_chunks} chunks")

        for index in sorted(received):
            self._acknowledge(index)

        outstanding = [i for i in range(self.total_chunks) if i not in received]
        self._transition(UploadState.IN_FLIGHT)
        await self._dispatch(outstanding, self._send_chunk)

    async def _send_chunk(self, index: int) -> None:
        data = await asyncio.to_thread(read_chunk, self.file_path, index, self.chunk_size)
        self.dispatched.append(index)
        await self.client.upload_chunk(
            self.file_name,
            index,
            data,
            self.total_chunks,
            self.file_size,
            compute_checksum(data),
        )

    async def _dispatch(self, indices: List[int], sender: Callable[[int], Awaitable[None]]) -> None:
        """
        Send indices through a bounded pool of worker tasks.

        Raises:
            The first failure seen by any worker, after all workers stop
        """
        if not indices:
            return

        queue: asyncio.Queue = asyncio.Queue()
        for index in indices:
            queue.put_nowait(index)

        failures: List[Exception] = []

        async def worker() -> None:
            while not self._cancel_event.is_set() and not failures:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    await sender(index)
                except (ClientError, OSError) as e:
                    failures.append(e)
                    return
                self._acknowledge(index)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.max_workers, len(indices)))]
        await asyncio.gather(*workers)

        if failures:
            raise failures[0]

    async def _run_sequential(self) -> None:
        self._transition(UploadState.IN_FLIGHT)
        for index in range(self.total_chunks):
            if self._cancel_event.is_set():
                return
            data = await asyncio.to_thread(read_chunk, self.file_path, index, self.chunk_size)
            self.dispatched.append(index)
            await self.client.stream_chunk(
                self.file_name,
                data,
                is_last=index == self.total_chunks - 1,
                offset=index * self.chunk_size,
            )
            self._acknowledge(index)

    async def _run_one_shot(self) -> None:
        self._transition(UploadState.IN_FLIGHT)
        data = await asyncio.to_thread(self.file_path.read_bytes)
        self.dispatched.extend(range(self.total_chunks))
        await self.client.upload_whole(self.file_name, data)
        for index in range(self.total_chunks):
            self._acknowledge(index)
