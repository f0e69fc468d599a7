"""Shared data type definitions (UploadSession, ResumeInfo)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UploadSession:
    """
    Server-side bookkeeping for one logical file upload.
    """
    session_key: str
    file_name: str
    total_chunks: int
    total_size: int = 0
    chunk_size: Optional[int] = None
    last_chunk_size: Optional[int] = None
    received_chunks: Set[int] = field(default_factory=set)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def is_complete(self) -> bool:
        return len(self.received_chunks) == self.total_chunks

    def copy(self) -> "UploadSession":
        return UploadSession(
            session_key=self.session_key,
            file_name=self.file_name,
            total_chunks=self.total_chunks,
            total_size=self.total_size,
            chunk_size=self.chunk_size,
            last_chunk_size=self.last_chunk_size,
            received_chunks=set(self.received_chunks),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_key": self.session_key,
            "file_name": self.file_name,
            "total_chunks": self.total_chunks,
            "total_size": self.total_size,
            "chunk_size": self.chunk_size,
            "last_chunk_size": self.last_chunk_size,
            "received_chunks": sorted(self.received_chunks),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadSession":
        return cls(
            session_key=data["session_key"],
            file_name=data["file_name"],
            total_chunks=int(data["total_chunks"]),
            total_size=int(data.get("total_size", 0)),
            chunk_size=data.get("chunk_size"),
            last_chunk_size=data.get("last_chunk_size"),
            received_chunks={int(i) for i in data.get("received_chunks", [])},
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
        )


@dataclass(frozen=True)
class ResumeInfo:
    """
    Answer to "what have you already received?" for one upload.
    """
    file_name: str
    total_chunks: int
    received_chunks: List[int]
