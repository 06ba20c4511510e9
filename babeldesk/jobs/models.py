"""Job record data model for translation processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_USER = "awaiting-user"
    SUCCESS = "success"
    FAILED = "failed"


class SourceType(str, Enum):
    LOCAL = "local"
    DOWNLOAD = "download"


class JobInput(BaseModel):
    """What a caller hands to ``enqueue``."""
    source_path: str
    original_name: str
    source_type: SourceType = SourceType.LOCAL
    download_id: Optional[str] = None


class JobRecord(BaseModel):
    """Tracks the lifecycle of one translation job."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_path: str
    original_name: str
    source_type: SourceType = SourceType.LOCAL
    download_id: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    logs: List[str] = Field(default_factory=list)
    output_dir: Optional[str] = None
    save_path: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_input(cls, job_input: JobInput) -> "JobRecord":
        return cls(
            source_path=job_input.source_path,
            original_name=job_input.original_name,
            source_type=job_input.source_type,
            download_id=job_input.download_id,
        )

    def touch(self) -> None:
        self.updated_at = utcnow()

    def append_log(self, line: str, capacity: int = 500) -> None:
        """Append to the log ring buffer, evicting the oldest lines."""
        self.logs.append(line)
        overflow = len(self.logs) - capacity
        if overflow > 0:
            del self.logs[:overflow]
        self.touch()


class HistoryRecord(BaseModel):
    """Persisted view of a job, kept across application restarts."""
    id: str
    title: str
    authors: Optional[str] = None
    abstract_snippet: Optional[str] = None
    source_path: str
    translated_path: Optional[str] = None
    save_path: Optional[str] = None
    status: JobStatus
    error_message: Optional[str] = None
    progress: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    logs: List[str] = Field(default_factory=list)


class ProgressUpdate(BaseModel):
    """A progress value derived from one line of tool output."""
    progress: int
    source: str  # "structured" or "milestone"
    stage: Optional[str] = None
