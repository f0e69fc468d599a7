"""Read-only view of what an upload session has already received."""

from common.types import ResumeInfo
from coordinator.session_registry import SessionRegistry


class ResumeQuery:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def resume_info(self, session_key: str) -> ResumeInfo:
        """
        Report the received chunks of a session.

        Raises:
            SessionNotFoundError: If the upload has not been started
        """
        session = self.registry.get(session_key)
        return ResumeInfo(
            file_name=session.file_name,
            total_chunks=session.total_chunks,
            received_chunks=sorted(session.received_chunks),
        )
