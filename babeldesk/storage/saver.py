"""Copy a finished translation into a user-chosen destination."""

import asyncio
import logging
import os
import shutil
from typing import List, Optional, Tuple

from babeldesk.documents.insight import (
    InsightProvider,
    derive_document_insight,
    sanitize_title,
)
from babeldesk.errors import InvalidJobStateError, JobNotFoundError, OutputNotReadyError
from babeldesk.jobs.dispatcher import JobDispatcher
from babeldesk.jobs.models import HistoryRecord, JobStatus
from babeldesk.storage.history import HistoryStore

logger = logging.getLogger(__name__)


def clean_destination(destination: str) -> str:
    """Strip surrounding quotes and whitespace pasted in with a path."""
    return destination.strip().strip("\"'").strip()


def output_suffix(file_name: str) -> str:
    suffix = ""
    if ".zh.dual" in file_name:
        suffix += "_zh_dual"
    elif ".zh.mono" in file_name:
        suffix += "_zh_mono"
    if ".decompressed" in file_name:
        suffix += "_decompressed"
    return suffix


def copy_outputs(source_dir: str, destination: str, title: str) -> Tuple[int, Optional[str]]:
    """Copy every file in ``source_dir`` to ``destination`` renamed after ``title``.

    Returns the number of files copied and the path of the bilingual PDF
    when one was among them.
    """
    os.makedirs(destination, exist_ok=True)
    stem = sanitize_title(title)
    copied = 0
    dual_pdf: Optional[str] = None
    for file_name in sorted(os.listdir(source_dir)):
        source_path = os.path.join(source_dir, file_name)
        if not os.path.isfile(source_path):
            continue
        suffix = output_suffix(file_name)
        ext = os.path.splitext(file_name)[1]
        target = os.path.join(destination, f"{stem}{suffix}{ext}")
        logger.info("Copying %s -> %s", file_name, target)
        shutil.copy2(source_path, target)
        copied += 1
        if "_zh_dual" in suffix and ext.lower() == ".pdf":
            dual_pdf = target
    return copied, dual_pdf


def _list_files(directory: str) -> List[str]:
    return [n for n in os.listdir(directory) if os.path.isfile(os.path.join(directory, n))]


async def save_output(
    job_id: str,
    destination: str,
    history: HistoryStore,
    dispatcher: JobDispatcher,
    insight_provider: InsightProvider = derive_document_insight,
) -> HistoryRecord:
    """Save a job's translated files and mark the job as saved."""
    target_dir = clean_destination(destination)
    record = history.get(job_id)
    if record is None:
        raise JobNotFoundError(f"No translation record for job {job_id}")
    job = dispatcher.get_job(job_id)
    if job is not None and job.status in (JobStatus.QUEUED, JobStatus.RUNNING):
        raise InvalidJobStateError(f"Job {job_id} is still {job.status.value}")
    if not record.translated_path:
        raise OutputNotReadyError(f"Job {job_id} has no translated output yet")
    if not os.path.isdir(record.translated_path):
        raise OutputNotReadyError(f"Output directory does not exist: {record.translated_path}")
    if not _list_files(record.translated_path):
        raise OutputNotReadyError("The translation output directory is empty")

    title = insight_provider(record.source_path).title
    copied, dual_pdf = await asyncio.to_thread(
        copy_outputs, record.translated_path, target_dir, title
    )
    if copied == 0:
        raise OutputNotReadyError("No files were copied")

    save_path = dual_pdf or target_dir
    logger.info("Saved %d file(s) for job %s; save path %s", copied, job_id, save_path)
    updated = history.upsert(
        job_id, status=JobStatus.SUCCESS, save_path=save_path, progress=100, error_message=None
    )
    dispatcher.mark_saved(job_id, save_path)
    return updated
