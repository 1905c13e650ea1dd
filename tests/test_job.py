# tests/test_job.py
import asyncio
import datetime

import pytest

from project_tasks.exceptions import ProcessSpawnError
from project_tasks.job import Job, JobState
from project_tasks.job_handle import JobHandle
from project_tasks.resolver import Invocation, ResolvedCommand


@pytest.fixture
def command():
    return ResolvedCommand(
        argv=("echo", "hi"),
        cwd="/tmp",
        task_name="build",
        backend_name="cmake",
        invocation=Invocation.FALLBACK,
        env={"SECRET": "x"},
    )


def test_initial_state(command):
    job = Job(command=command)
    assert job.state is JobState.STARTING
    assert not job.is_finalized
    assert job.success is None
    assert job.duration_str == "-"
    assert job.task_name == "build"


def test_success_flow(command):
    job = Job(command=command)
    job.mark_running(pid=123)
    assert job.state is JobState.RUNNING
    assert job.pid == 123
    assert job.mark_succeeded()
    assert job.state is JobState.SUCCEEDED
    assert job.success is True
    assert job.exit_code == 0
    assert job.is_finalized
    assert job.duration is not None


def test_failure_keeps_exit_code(command):
    job = Job(command=command)
    job.mark_running(1)
    job.mark_failed("Command exited with code 2", exit_code=2)
    assert job.state is JobState.FAILED
    assert job.success is False
    assert job.exit_code == 2


def test_cancelled_is_not_failed(command):
    job = Job(command=command)
    job.mark_running(1)
    job.mark_cancelled()
    assert job.state is JobState.CANCELLED
    assert job.success is None
    assert job.error == "Cancelled"


def test_first_terminal_transition_wins(command):
    job = Job(command=command)
    job.mark_running(1)
    assert job.mark_cancelled("user")
    assert not job.mark_failed("exit -15", exit_code=-15)
    assert not job.mark_succeeded()
    assert job.state is JobState.CANCELLED
    assert job.exit_code is None


def test_mark_running_only_from_starting(command):
    job = Job(command=command)
    job.mark_cancelled()
    job.mark_running(5)
    assert job.state is JobState.CANCELLED
    assert job.pid is None


def test_output_by_stream(command):
    job = Job(command=command)
    job.append_output("a", "stdout")
    job.append_output("b", "stderr")
    job.append_output("c", "stdout")
    assert job.output == "abc"
    assert job.stream_output("stdout") == "ac"
    assert job.stream_output("stderr") == "b"


@pytest.mark.parametrize(
    "seconds, expected",
    [(0.452, "452ms"), (2.44, "2.4s"), (83, "1m 23s"), (7500, "2h 5m")],
)
def test_duration_str(command, seconds, expected):
    job = Job(command=command)
    job.duration = datetime.timedelta(seconds=seconds)
    assert job.duration_str == expected


def test_to_dict_hides_env_values(command):
    job = Job(command=command)
    job.mark_failed(ProcessSpawnError(["echo"], FileNotFoundError(2, "No such file")))
    data = job.to_dict()
    assert data["state"] == "failed"
    assert data["argv"] == ["echo", "hi"]
    assert data["invocation"] == "fallback"
    assert data["env_keys"] == ["SECRET"]
    assert "x" not in str(data["env_keys"])
    assert data["error"].startswith("Failed to start 'echo'")


def test_repr(command):
    assert "task='build'" in repr(Job(command=command))


@pytest.mark.asyncio
async def test_future_resolves_on_finish(command):
    job = Job(command=command)
    future = job.future
    assert not future.done()
    job.mark_succeeded()
    assert (await future) is job


@pytest.mark.asyncio
async def test_future_created_after_finish_is_done(command):
    job = Job(command=command)
    job.mark_cancelled()
    assert job.future.done()


@pytest.mark.asyncio
async def test_handle_wait_and_properties(command):
    job = Job(command=command)
    handle = JobHandle(job)
    assert handle.state is JobState.STARTING
    assert handle.task_name == "build"
    assert handle.command is command

    asyncio.get_running_loop().call_later(0.01, job.mark_failed, "boom", 3)
    result = await handle.wait(timeout=1.0)
    assert result is job
    assert handle.exit_code == 3
    assert handle.success is False
    assert handle.error == "boom"
    assert handle.is_finalized
    assert not handle.is_cancelled


@pytest.mark.asyncio
async def test_handle_wait_timeout_does_not_cancel_job_future(command):
    job = Job(command=command)
    handle = JobHandle(job)
    with pytest.raises(asyncio.TimeoutError):
        await handle.wait(timeout=0.01)
    assert not job.future.cancelled()
    job.mark_cancelled()
    assert (await handle.wait(timeout=1.0)).state is JobState.CANCELLED
    assert handle.is_cancelled
