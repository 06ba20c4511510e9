"""Translation queue endpoints: enqueue documents and save their output."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from babeldesk.api.deps import get_history, get_queue
from babeldesk.errors import JobNotFoundError
from babeldesk.jobs.in_process_queue import TranslationQueue
from babeldesk.jobs.models import HistoryRecord, JobInput, JobRecord
from babeldesk.storage.history import HistoryStore
from babeldesk.storage.saver import save_output

router = APIRouter()


class SaveOutputRequest(BaseModel):
    destination: str


@router.post("/translations", response_model=List[JobRecord])
async def enqueue_files(
    files: List[JobInput],
    queue: TranslationQueue = Depends(get_queue),
):
    """Queue one job per document. Jobs run one at a time in order."""
    return [queue.enqueue(file) for file in files]


@router.get("/translations/queue", response_model=List[JobRecord])
async def get_translation_queue(queue: TranslationQueue = Depends(get_queue)):
    return queue.get_queue()


@router.get("/translations/{job_id}", response_model=JobRecord)
async def get_translation(job_id: str, queue: TranslationQueue = Depends(get_queue)):
    job = queue.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job '{job_id}' not found")
    return job


@router.post("/translations/{job_id}/save", response_model=HistoryRecord)
async def save_translation(
    job_id: str,
    request: SaveOutputRequest,
    queue: TranslationQueue = Depends(get_queue),
    history: HistoryStore = Depends(get_history),
):
    """Copy the translated files to ``destination`` and mark the job saved."""
    return await save_output(job_id, request.destination, history, queue)
