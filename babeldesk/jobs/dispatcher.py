"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from babeldesk.jobs.models import JobInput, JobRecord


class JobDispatcher(ABC):
    """Abstract interface for translation job dispatching."""

    @abstractmethod
    def enqueue(self, job_input: JobInput) -> JobRecord:
        """Queue a job and return its record without waiting for it to run."""
        ...

    @abstractmethod
    def get_queue(self) -> List[JobRecord]:
        """All jobs enqueued this session, in insertion order."""
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def mark_saved(self, job_id: str, save_path: str) -> Optional[JobRecord]:
        """Record the user's save destination. Returns None for unknown ids."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop dispatching and terminate any live process."""
        ...
