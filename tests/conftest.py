"""Shared test fixtures for the babeldesk test suite."""

import os
import stat
import sys
import textwrap
from typing import Any, Dict, List, Optional

import pytest

from babeldesk.environment.provisioner import StaticEnvironmentProvisioner
from babeldesk.jobs.command import ToolOptions
from babeldesk.jobs.events import EventSink
from babeldesk.jobs.in_process_queue import TranslationQueue
from babeldesk.jobs.models import JobInput, JobStatus
from babeldesk.storage.history import JsonHistoryStore
from babeldesk.storage.output_dirs import OutputDirectoryStore


class RecordingEventSink(EventSink):
    """Keeps every event in order and tracks how many jobs run at once."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self.running: set = set()
        self.max_concurrent_running = 0
        self.running_order: List[str] = []

    def status(self, job_id, status, progress=None):
        status = JobStatus(status)
        self.events.append({"event": "status", "id": job_id, "status": status, "progress": progress})
        if status == JobStatus.RUNNING and job_id not in self.running:
            self.running.add(job_id)
            self.running_order.append(job_id)
        elif status != JobStatus.RUNNING:
            self.running.discard(job_id)
        self.max_concurrent_running = max(self.max_concurrent_running, len(self.running))

    def progress(self, job_id, message):
        self.events.append({"event": "progress", "id": job_id, "message": message})

    def completed(self, job_id, success, output_dir=None, error=None):
        self.events.append(
            {"event": "completed", "id": job_id, "success": success, "output_dir": output_dir, "error": error}
        )

    def of(self, job_id: str, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["id"] == job_id and (kind is None or e["event"] == kind)]

    def progress_values(self, job_id: str) -> List[int]:
        return [e["progress"] for e in self.of(job_id, "status") if e["progress"] is not None]


@pytest.fixture
def fake_tool(tmp_path):
    """Factory writing an executable Python script that stands in for babeldoc."""
    counter = {"n": 0}

    def _make(body: str) -> str:
        counter["n"] += 1
        path = tmp_path / f"fake_babeldoc_{counter['n']}"
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def history(tmp_path):
    return JsonHistoryStore(str(tmp_path / "history.json"))


@pytest.fixture
def output_dirs(tmp_path):
    return OutputDirectoryStore(str(tmp_path / "runtime" / "translations"))


@pytest.fixture
async def make_queue(history, output_dirs, sink):
    """Factory for a queue running ``executable`` (or a custom provisioner)."""
    queues: List[TranslationQueue] = []

    def _make(executable: Optional[str] = None, provisioner=None, options=None, **kwargs) -> TranslationQueue:
        if provisioner is None:
            provisioner = StaticEnvironmentProvisioner.for_executable(executable)
        queue = TranslationQueue(
            provisioner=provisioner,
            history=history,
            output_dirs=output_dirs,
            events=sink,
            options_provider=(lambda: options) if options is not None else ToolOptions,
            **kwargs,
        )
        queues.append(queue)
        return queue

    yield _make
    for queue in queues:
        await queue.stop()


@pytest.fixture
def source_pdf(tmp_path):
    path = tmp_path / "Attention_Is_All_You_Need.pdf"
    path.write_bytes(b"%PDF-1.4\n")
    return str(path)


def job_input(path: str, name: Optional[str] = None) -> JobInput:
    return JobInput(source_path=path, original_name=name or os.path.basename(path))
