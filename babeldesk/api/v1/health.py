"""Health check endpoint."""

from fastapi import APIRouter, Depends
import platform
import sys

from babeldesk.api.deps import get_queue
from babeldesk.jobs.in_process_queue import TranslationQueue
from babeldesk.jobs.models import JobStatus

router = APIRouter()


@router.get("/health")
async def health_check(queue: TranslationQueue = Depends(get_queue)):
    """Service health, queue state, and system info."""
    jobs = queue.get_queue()
    counts = {status.value: 0 for status in JobStatus}
    for job in jobs:
        counts[job.status.value] += 1

    return {
        "status": "healthy",
        "processing": queue.is_processing,
        "jobs": counts,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
