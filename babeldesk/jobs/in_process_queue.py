"""In-process translation queue.

Runs the external BabelDOC process for one job at a time on the asyncio
event loop. ``enqueue`` appends to an ordered list and kicks the dispatch
step; the dispatch step runs the oldest queued job when no other job is
active and re-schedules itself once that job finishes, whatever the
outcome. All state lives on the event loop thread, so the
``_processing`` flag is the only coordination needed.
"""

import asyncio
import logging
import os
from typing import Callable, List, Optional, Set

from babeldesk.documents.insight import (
    DocumentInsight,
    InsightProvider,
    derive_document_insight,
)
from babeldesk.environment.provisioner import EnvironmentProvisioner
from babeldesk.errors import (
    ExecutionError,
    InvalidJobStateError,
    JobRunError,
    JobTimeoutError,
    ProvisioningError,
    SpawnError,
)
from babeldesk.jobs.command import ToolOptions, build_arguments, render_command
from babeldesk.jobs.dispatcher import JobDispatcher
from babeldesk.jobs.events import EventSink, NullEventSink
from babeldesk.jobs.models import (
    HistoryRecord,
    JobInput,
    JobRecord,
    JobStatus,
    ProgressUpdate,
)
from babeldesk.jobs.progress import interpret_line
from babeldesk.jobs.stream import iter_lines
from babeldesk.storage.history import HistoryStore
from babeldesk.storage.output_dirs import OutputDirectoryStore

logger = logging.getLogger(__name__)

OUTPUT_DIR_ENV = "BABELDOC_OUTPUT_DIR"

_FAILURE_MESSAGES = {
    ProvisioningError: "The BabelDOC environment is not available",
    SpawnError: "Failed to start BabelDOC",
}


def _default_failure_message(exc: JobRunError) -> str:
    for exc_cls, message in _FAILURE_MESSAGES.items():
        if isinstance(exc, exc_cls):
            return message
    return f"Translation failed ({type(exc).__name__})"


class TranslationQueue(JobDispatcher):
    """Serializes translation jobs and supervises the external process."""

    def __init__(
        self,
        provisioner: EnvironmentProvisioner,
        history: HistoryStore,
        output_dirs: OutputDirectoryStore,
        events: Optional[EventSink] = None,
        options_provider: Optional[Callable[[], ToolOptions]] = None,
        insight_provider: InsightProvider = derive_document_insight,
        log_capacity: int = 500,
        timeout_seconds: float = 0,
        kill_grace_seconds: float = 5,
    ):
        self._provisioner = provisioner
        self._history = history
        self._output_dirs = output_dirs
        self._events = events or NullEventSink()
        self._options_provider = options_provider or ToolOptions
        self._insight_provider = insight_provider
        self._log_capacity = log_capacity
        self._timeout = timeout_seconds
        self._kill_grace = kill_grace_seconds

        self._queue: List[JobRecord] = []
        self._processing = False
        self._stopped = False
        self._tasks: Set[asyncio.Task] = set()

    # ── Public API ───────────────────────────────────────────────────

    @property
    def is_processing(self) -> bool:
        return self._processing

    def enqueue(self, job_input: JobInput) -> JobRecord:
        """Must be called from within the running event loop."""
        job = JobRecord.from_input(job_input)
        self._queue.append(job)
        logger.info("Queued job %s (%s)", job.id, job.original_name)
        self._events.status(job.id, JobStatus.QUEUED, 0)
        self._schedule()
        return job.model_copy(deep=True)

    def get_queue(self) -> List[JobRecord]:
        return [job.model_copy(deep=True) for job in self._queue]

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        job = self._find(job_id)
        return job.model_copy(deep=True) if job else None

    def mark_saved(self, job_id: str, save_path: str) -> Optional[JobRecord]:
        job = self._find(job_id)
        if job is None:
            return None
        if job.status in (JobStatus.QUEUED, JobStatus.RUNNING):
            raise InvalidJobStateError(
                f"Job {job_id} is {job.status.value}; only finished jobs can be saved"
            )
        job.status = JobStatus.SUCCESS
        job.progress = 100
        job.save_path = save_path
        job.error = None
        job.touch()
        self._events.status(job.id, JobStatus.SUCCESS, 100)
        self._sync_history(
            job,
            status=JobStatus.SUCCESS,
            save_path=save_path,
            progress=100,
            error_message=None,
        )
        return job.model_copy(deep=True)

    async def stop(self) -> None:
        self._stopped = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no job is queued or running."""
        while self._tasks or self._processing:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    # ── Dispatch ─────────────────────────────────────────────────────

    def _find(self, job_id: str) -> Optional[JobRecord]:
        return next((job for job in self._queue if job.id == job_id), None)

    def _schedule(self) -> None:
        if self._stopped or self._processing:
            return
        task = asyncio.get_running_loop().create_task(self._process_next())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_next(self) -> None:
        if self._processing or self._stopped:
            return
        job = next((j for j in self._queue if j.status == JobStatus.QUEUED), None)
        if job is None:
            return

        self._processing = True
        try:
            await self._run_job(job)
        except Exception:
            logger.exception("Unexpected error while finishing job %s", job.id)
        finally:
            self._processing = False
        self._schedule()

    # ── Running a job ────────────────────────────────────────────────

    async def _run_job(self, job: JobRecord) -> None:
        try:
            self._start_episode(job)
            environment = await self._resolve_environment()
            output_dir = self._output_dirs.get_job_dir(job.id)
            options = self._options_provider()
            args = build_arguments(job.source_path, output_dir, options)
            command_line = render_command(environment.executable_path, args, options.secret_values)
            logger.info("Job %s: %s", job.id, command_line)
            self._append_log(job, f"Running command: {command_line}", interpret=False)

            exit_code = await self._execute(job, environment.executable_path, args, output_dir)
            if exit_code != 0:
                raise ExecutionError(exit_code)
        except asyncio.CancelledError:
            self._fail(job, "Translation cancelled because the application is shutting down")
            raise
        except JobRunError as exc:
            self._fail(job, str(exc) or _default_failure_message(exc))
            return
        except Exception as exc:
            logger.exception("Job %s failed", job.id)
            self._fail(job, f"{type(exc).__name__}: {exc}")
            return

        self._finish(job, output_dir)

    async def _resolve_environment(self):
        try:
            return await self._provisioner.ensure()
        except ProvisioningError:
            raise
        except Exception as exc:
            raise ProvisioningError(f"Environment check failed: {exc}") from exc

    async def _execute(
        self, job: JobRecord, executable: str, args: List[str], output_dir: str
    ) -> Optional[int]:
        env = dict(os.environ)
        env[OUTPUT_DIR_ENV] = output_dir
        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {executable}: {exc}") from exc

        try:
            if self._timeout > 0:
                try:
                    return await asyncio.wait_for(self._communicate(job, proc), self._timeout)
                except asyncio.TimeoutError:
                    await self._terminate(proc)
                    raise JobTimeoutError(self._timeout) from None
            return await self._communicate(job, proc)
        finally:
            if proc.returncode is None:
                await self._terminate(proc)

    async def _communicate(self, job: JobRecord, proc: asyncio.subprocess.Process) -> Optional[int]:
        await asyncio.gather(
            self._consume(job, proc.stdout),
            self._consume(job, proc.stderr),
        )
        return await proc.wait()

    async def _consume(self, job: JobRecord, reader: Optional[asyncio.StreamReader]) -> None:
        if reader is None:
            return
        async for line in iter_lines(reader):
            self._append_log(job, line)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), self._kill_grace)
        except asyncio.TimeoutError:
            logger.warning("Process %s ignored terminate; killing it", proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    # ── State transitions ────────────────────────────────────────────

    def _start_episode(self, job: JobRecord) -> None:
        job.status = JobStatus.RUNNING
        job.logs = []
        job.progress = 0
        job.error = None
        job.output_dir = None
        job.touch()
        logger.info("Starting job %s (%s)", job.id, job.source_path)
        self._events.status(job.id, JobStatus.RUNNING, 0)

        # a record written for this id by an earlier episode is reset, not duplicated
        if self._history.get(job.id) is not None:
            self._sync_history(
                job, status=JobStatus.RUNNING, logs=[], progress=0, error_message=None
            )
            return

        insight = self._document_insight(job)
        record = HistoryRecord(
            id=job.id,
            title=insight.title,
            authors=insight.authors,
            abstract_snippet=insight.abstract_snippet,
            source_path=job.source_path,
            status=JobStatus.RUNNING,
            progress=0,
            created_at=job.created_at,
            logs=[],
        )
        try:
            self._history.append(record)
        except OSError as exc:
            logger.warning("Could not write history for job %s: %s", job.id, exc)

    def _document_insight(self, job: JobRecord) -> DocumentInsight:
        try:
            return self._insight_provider(job.source_path)
        except Exception as exc:
            logger.warning("Document insight failed for %s: %s", job.source_path, exc)
            return DocumentInsight(title=job.original_name)

    def _finish(self, job: JobRecord, output_dir: str) -> None:
        outputs = self._output_dirs.list_outputs(job.id)
        if outputs:
            logger.info("Job %s produced %d file(s): %s", job.id, len(outputs), ", ".join(outputs))
        else:
            logger.warning("Job %s exited cleanly but %s is empty", job.id, output_dir)

        job.status = JobStatus.AWAITING_USER
        job.progress = 100
        job.output_dir = output_dir
        job.error = None
        job.touch()
        self._events.status(job.id, JobStatus.AWAITING_USER, 100)
        self._sync_history(
            job,
            status=JobStatus.AWAITING_USER,
            translated_path=output_dir,
            logs=list(job.logs),
            progress=100,
            error_message=None,
        )
        self._events.completed(job.id, True, output_dir=output_dir)

    def _fail(self, job: JobRecord, message: str) -> None:
        # a failed job always carries an error
        message = message.strip() or "Translation failed"
        logger.error("Job %s failed: %s", job.id, message)
        job.status = JobStatus.FAILED
        job.progress = 100
        job.error = message
        job.touch()
        self._events.status(job.id, JobStatus.FAILED, 100)
        self._append_log(job, message, interpret=False)
        self._sync_history(
            job,
            status=JobStatus.FAILED,
            error_message=message,
            logs=list(job.logs),
            progress=100,
        )
        self._events.completed(job.id, False, error=message)

    def _append_log(self, job: JobRecord, message: str, interpret: bool = True) -> None:
        line = message.strip()
        if not line:
            return
        job.append_log(line, self._log_capacity)
        self._events.progress(job.id, line)
        self._sync_history(job, logs=list(job.logs))
        if interpret:
            update = interpret_line(line, job.progress)
            if update is not None:
                self._apply_progress(job, update)

    def _apply_progress(self, job: JobRecord, update: ProgressUpdate) -> None:
        job.progress = update.progress
        job.touch()
        self._events.status(job.id, job.status, update.progress)
        self._sync_history(job, progress=update.progress)
        logger.info(
            "Job %s progress: %d%% (%s)",
            job.id,
            update.progress,
            update.stage or update.source,
        )

    def _sync_history(self, job: JobRecord, **fields) -> Optional[HistoryRecord]:
        try:
            return self._history.upsert(job.id, **fields)
        except OSError as exc:
            logger.warning("Could not update history for job %s: %s", job.id, exc)
            return None
