"""Lifecycle notifications from the translation queue to the front-end."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Dict, List, Optional

from babeldesk.jobs.models import JobStatus

logger = logging.getLogger(__name__)


class EventSink(ABC):
    """Three fire-and-forget channels. Nothing flows back to the queue."""

    @abstractmethod
    def status(self, job_id: str, status: JobStatus, progress: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def progress(self, job_id: str, message: str) -> None:
        ...

    @abstractmethod
    def completed(
        self,
        job_id: str,
        success: bool,
        output_dir: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ...


class NullEventSink(EventSink):
    def status(self, job_id, status, progress=None):
        pass

    def progress(self, job_id, message):
        pass

    def completed(self, job_id, success, output_dir=None, error=None):
        pass


class BroadcastEventSink(EventSink):
    """Fans events out to every subscriber's queue.

    Subscriber queues are bounded; a subscriber that falls behind loses
    its oldest events rather than slowing the producer down.
    """

    def __init__(self, max_pending: int = 1000):
        self._subscribers: List[asyncio.Queue] = []
        self._max_pending = max_pending

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def status(self, job_id, status, progress=None):
        event: Dict[str, Any] = {"event": "status", "id": job_id, "status": JobStatus(status).value}
        if progress is not None:
            event["progress"] = progress
        self.publish(event)

    def progress(self, job_id, message):
        self.publish({"event": "progress", "id": job_id, "message": message})

    def completed(self, job_id, success, output_dir=None, error=None):
        event: Dict[str, Any] = {"event": "completed", "id": job_id, "success": success}
        if output_dir is not None:
            event["output_dir"] = output_dir
        if error is not None:
            event["error"] = error
        self.publish(event)

    def publish(self, event: Dict[str, Any]) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

    async def subscribe(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield events published after subscription until the consumer stops."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
