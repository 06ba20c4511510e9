"""Tests for the translation queue: dispatch order, process supervision, state."""
import asyncio
import json
import os

import pytest

from babeldesk.environment.provisioner import EnvironmentProvisioner
from babeldesk.errors import InvalidJobStateError, ProvisioningError
from babeldesk.jobs.command import ToolOptions
from babeldesk.jobs.models import HistoryRecord, JobStatus

from conftest import job_input


SUCCESS_TOOL = """
import os, sys
out = os.environ["BABELDOC_OUTPUT_DIR"]
print("start to translate: paper.pdf")
print("{'stage': 'Translate Paragraphs', 'overall_progress': 74.8, 'stage_current': 3}")
print("Translate Paragraphs: batch 2")
with open(os.path.join(out, "paper.no_watermark.zh.dual.pdf"), "w") as f:
    f.write("translated")
print("finish translate: paper.pdf")
"""

FAILING_TOOL = """
import sys
print("start to translate")
print("Traceback: something broke", file=sys.stderr)
sys.exit(1)
"""

SLOW_TOOL = """
import time
print("start to translate", flush=True)
time.sleep(30)
"""


class FailingProvisioner(EnvironmentProvisioner):
    async def ensure(self):
        raise ProvisioningError("No compatible Python 3.10+ runtime was found on PATH")

    def reset(self):
        pass


async def wait_for_status(queue, job_id, status, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while queue.get_job(job_id).status != status:
        if loop.time() > deadline:
            raise AssertionError(f"job {job_id} never reached {status}")
        await asyncio.sleep(0.01)


async def test_enqueue_returns_queued_record_immediately(make_queue, fake_tool, source_pdf):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    job = queue.enqueue(job_input(source_pdf))

    assert job.status == JobStatus.QUEUED
    assert job.progress == 0
    assert job.logs == []
    assert job.output_dir is None
    assert [j.id for j in queue.get_queue()] == [job.id]
    await queue.wait_idle()


async def test_successful_run_awaits_user(make_queue, fake_tool, source_pdf, sink, history):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    done = queue.get_job(job.id)
    assert done.status == JobStatus.AWAITING_USER
    assert done.progress == 100
    assert done.error is None
    assert done.output_dir is not None
    assert os.listdir(done.output_dir) == ["paper.no_watermark.zh.dual.pdf"]
    assert done.logs[0].startswith("Running command: ")
    assert "start to translate: paper.pdf" in done.logs

    completed = sink.of(job.id, "completed")
    assert completed == [
        {"event": "completed", "id": job.id, "success": True, "output_dir": done.output_dir, "error": None}
    ]

    record = history.get(job.id)
    assert record.status == JobStatus.AWAITING_USER
    assert record.translated_path == done.output_dir
    assert record.progress == 100
    assert record.title == "Attention Is All You Need"
    assert record.logs == done.logs


async def test_progress_is_monotonic_and_ignores_lower_milestones(make_queue, fake_tool, source_pdf, sink):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    values = sink.progress_values(job.id)
    # queued 0, running 0, milestone 5, structured 75, finish 98, done 100
    assert values == [0, 0, 5, 75, 98, 100]
    assert values == sorted(values)
    assert 60 not in values


async def test_failure_does_not_stop_the_queue(make_queue, fake_tool, source_pdf, sink):
    failing = fake_tool(FAILING_TOOL)
    queue = make_queue(failing)
    first = queue.enqueue(job_input(source_pdf, "a.pdf"))
    second = queue.enqueue(job_input(source_pdf, "b.pdf"))
    await queue.wait_idle()

    a = queue.get_job(first.id)
    b = queue.get_job(second.id)
    assert a.status == JobStatus.FAILED
    assert "1" in a.error
    assert a.progress == 100
    assert a.logs[-1] == a.error
    assert "Traceback: something broke" in a.logs
    # b was dispatched automatically after a failed
    assert b.status == JobStatus.FAILED
    assert sink.running_order == [first.id, second.id]
    assert sink.of(first.id, "completed")[0]["success"] is False


async def test_only_one_job_runs_at_a_time(make_queue, fake_tool, tmp_path, sink):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    jobs = []
    for i in range(4):
        path = tmp_path / f"doc{i}.pdf"
        path.write_bytes(b"%PDF")
        jobs.append(queue.enqueue(job_input(str(path))))
    await queue.wait_idle()

    assert sink.max_concurrent_running == 1
    assert sink.running_order == [j.id for j in jobs]
    assert all(j.status == JobStatus.AWAITING_USER for j in queue.get_queue())


async def test_provisioning_failure_fails_job_and_continues(make_queue, source_pdf, sink, history):
    queue = make_queue(provisioner=FailingProvisioner())
    first = queue.enqueue(job_input(source_pdf))
    second = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    for job_id in (first.id, second.id):
        job = queue.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert "Python 3.10+" in job.error
        assert history.get(job_id).error_message == job.error


async def test_spawn_failure_is_reported(make_queue, tmp_path, source_pdf):
    queue = make_queue(str(tmp_path / "does-not-exist" / "babeldoc"))
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    failed = queue.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error.startswith("Failed to start")


async def test_logs_are_bounded_to_the_most_recent_lines(make_queue, fake_tool, source_pdf):
    tool = fake_tool(
        """
        for i in range(600):
            print(f"line {i}")
        """
    )
    queue = make_queue(tool)
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    logs = queue.get_job(job.id).logs
    assert len(logs) == 500
    assert logs[0] == "line 100"
    assert logs[-1] == "line 599"


async def test_partial_last_line_and_blank_lines(make_queue, fake_tool, source_pdf):
    tool = fake_tool(
        """
        import sys
        sys.stdout.write("first\\n\\n   \\nprogress 10%\\rprogress 20%\\rno newline at end")
        """
    )
    queue = make_queue(tool)
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    logs = queue.get_job(job.id).logs
    assert logs[1:] == ["first", "progress 10%", "progress 20%", "no newline at end"]


async def test_arguments_and_environment(make_queue, fake_tool, source_pdf):
    tool = fake_tool(
        """
        import json, os, sys
        out = os.environ["BABELDOC_OUTPUT_DIR"]
        with open(os.path.join(out, "argv.json"), "w") as f:
            json.dump(sys.argv[1:], f)
        """
    )
    options = ToolOptions(
        base_args=["--openai", "--openai-api-key", "sk-secret"],
        secret_values=["sk-secret"],
        bilingual=True,
        debug=True,
        extra_flags="  --pages 1-3 ",
    )
    queue = make_queue(tool, options=options)
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    done = queue.get_job(job.id)
    with open(os.path.join(done.output_dir, "argv.json")) as f:
        argv = json.load(f)
    assert argv == [
        "--openai", "--openai-api-key", "sk-secret",
        "--files", source_pdf,
        "--output", done.output_dir,
        "--watermark-output-mode", "no_watermark",
        "--debug", "--bilingual",
        "--pages", "1-3",
    ]
    assert "sk-secret" not in done.logs[0]


async def test_timeout_kills_the_process(make_queue, fake_tool, source_pdf):
    queue = make_queue(fake_tool(SLOW_TOOL), timeout_seconds=0.5, kill_grace_seconds=1)
    job = queue.enqueue(job_input(source_pdf))
    await asyncio.wait_for(queue.wait_idle(), timeout=10)

    failed = queue.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert "timed out" in failed.error


async def test_mark_saved_is_idempotent(make_queue, fake_tool, source_pdf, history):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    once = queue.mark_saved(job.id, "/dest")
    twice = queue.mark_saved(job.id, "/dest")
    for saved in (once, twice):
        assert saved.status == JobStatus.SUCCESS
        assert saved.save_path == "/dest"
        assert saved.progress == 100
        assert saved.error is None
    assert history.get(job.id).save_path == "/dest"
    assert history.get(job.id).status == JobStatus.SUCCESS


async def test_mark_saved_clears_error_of_failed_job(make_queue, fake_tool, source_pdf):
    queue = make_queue(fake_tool(FAILING_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    saved = queue.mark_saved(job.id, "/dest")
    assert saved.status == JobStatus.SUCCESS
    assert saved.error is None


async def test_mark_saved_unknown_job_returns_none(make_queue, fake_tool):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    assert queue.mark_saved("missing", "/dest") is None


async def test_mark_saved_refuses_running_and_queued_jobs(make_queue, fake_tool, source_pdf):
    queue = make_queue(fake_tool(SLOW_TOOL))
    running = queue.enqueue(job_input(source_pdf))
    waiting = queue.enqueue(job_input(source_pdf))
    await wait_for_status(queue, running.id, JobStatus.RUNNING)

    with pytest.raises(InvalidJobStateError):
        queue.mark_saved(running.id, "/dest")
    with pytest.raises(InvalidJobStateError):
        queue.mark_saved(waiting.id, "/dest")
    assert queue.get_job(running.id).status == JobStatus.RUNNING


async def test_stop_terminates_running_job(make_queue, fake_tool, source_pdf, sink):
    queue = make_queue(fake_tool(SLOW_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    await wait_for_status(queue, job.id, JobStatus.RUNNING)

    await asyncio.wait_for(queue.stop(), timeout=10)

    stopped = queue.get_job(job.id)
    assert stopped.status == JobStatus.FAILED
    assert "shutting down" in stopped.error
    assert not queue.is_processing


async def test_terminal_states_are_consistent(make_queue, fake_tool, tmp_path, source_pdf):
    ok = make_queue(fake_tool(SUCCESS_TOOL))
    a = ok.enqueue(job_input(source_pdf))
    await ok.wait_idle()
    bad = make_queue(fake_tool(FAILING_TOOL))
    b = bad.enqueue(job_input(source_pdf))
    await bad.wait_idle()

    for job in ok.get_queue() + bad.get_queue():
        if job.status == JobStatus.FAILED:
            assert job.error
        if job.status in (JobStatus.SUCCESS, JobStatus.AWAITING_USER):
            assert job.error is None
    assert ok.get_job(a.id).status == JobStatus.AWAITING_USER
    assert bad.get_job(b.id).status == JobStatus.FAILED


class SilentProvisioner(EnvironmentProvisioner):
    async def ensure(self):
        raise ProvisioningError()

    def reset(self):
        pass


async def test_failure_without_message_still_reports_error(make_queue, source_pdf, history):
    queue = make_queue(provisioner=SilentProvisioner())
    job = queue.enqueue(job_input(source_pdf))
    await queue.wait_idle()

    failed = queue.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == "The BabelDOC environment is not available"
    assert failed.logs[-1] == failed.error
    assert history.get(job.id).error_message == failed.error


async def test_command_line_is_not_read_as_progress(make_queue, fake_tool, tmp_path, sink):
    source = tmp_path / "Save PDF checklist.pdf"
    source.write_bytes(b"%PDF")
    tool = fake_tool(
        """
        print("start to translate")
        print("Parse Page Layout")
        """
    )
    queue = make_queue(tool)
    job = queue.enqueue(job_input(str(source)))
    await queue.wait_idle()

    done = queue.get_job(job.id)
    assert "Save PDF checklist.pdf" in done.logs[0]
    assert sink.progress_values(job.id) == [0, 0, 5, 25, 100]


async def test_existing_history_record_is_reset_for_a_new_episode(make_queue, fake_tool, source_pdf, history):
    queue = make_queue(fake_tool(SUCCESS_TOOL))
    job = queue.enqueue(job_input(source_pdf))
    # the dispatch task has not run yet
    history.append(
        HistoryRecord(
            id=job.id,
            title="Restored title",
            source_path=source_pdf,
            status=JobStatus.FAILED,
            error_message="previous failure",
            progress=100,
            logs=["old line"],
        )
    )
    await queue.wait_idle()

    assert len(history.list()) == 1
    record = history.get(job.id)
    assert record.title == "Restored title"
    assert record.status == JobStatus.AWAITING_USER
    assert record.error_message is None
    assert "old line" not in record.logs
    assert record.logs == queue.get_job(job.id).logs
