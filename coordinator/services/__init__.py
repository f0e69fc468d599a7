"""Service layer for upload coordination."""

from coordinator.services.chunk_receiver import ChunkReceiver, ReceiveResult
from coordinator.services.reassembler import Reassembler
from coordinator.services.resume_query import ResumeQuery
from coordinator.services.sequential_upload import SequentialUploadService
from coordinator.services.upload_coordinator import RecoveryReport, UploadCoordinator

__all__ = [
    "ChunkReceiver",
    "ReceiveResult",
    "Reassembler",
    "ResumeQuery",
    "SequentialUploadService",
    "RecoveryReport",
    "UploadCoordinator",
]
