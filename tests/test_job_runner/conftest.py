# tests/test_job_runner/conftest.py
import asyncio
import sys

import pytest

from project_tasks.job_runner import JobRunner
from project_tasks.output_sink import OutputSink
from project_tasks.resolver import Invocation, ResolvedCommand


class RecordingSink(OutputSink):
    """Sink that records every call in order."""

    def __init__(self):
        self.events = []

    def start(self, job):
        self.events.append(("start", job.task_name))

    def write(self, chunk, stream="stdout"):
        self.events.append(("write", stream, chunk))

    def notify(self, message, level=0):
        self.events.append(("notify", level, message))

    def finish(self, job):
        self.events.append(("finish", job.state))

    def text(self, stream=None):
        return "".join(e[2] for e in self.events if e[0] == "write" and (stream is None or e[1] == stream))

    @property
    def finishes(self):
        return [e for e in self.events if e[0] == "finish"]


@pytest.fixture
def make_command(tmp_path):
    """Factory: a ResolvedCommand running ``code`` with the current interpreter."""

    def _make(code, task_name="run", env=None, argv=None):
        return ResolvedCommand(
            argv=tuple(argv) if argv is not None else (sys.executable, "-c", code),
            cwd=str(tmp_path),
            task_name=task_name,
            backend_name="python",
            invocation=Invocation.DIRECT,
            env=env or {},
        )

    return _make


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def runner():
    return JobRunner(cancel_grace_period=1.0)


SLEEP_FOREVER = "import time\nprint('started', flush=True)\ntime.sleep(60)\n"


@pytest.fixture
def sleeper():
    """Code for a process that announces itself and then sleeps."""
    return SLEEP_FOREVER


@pytest.fixture
def wait_for_text():
    """Factory: await until ``text`` shows up in a RecordingSink (fails after ``timeout``)."""

    async def _wait(sink, text, timeout=10.0):
        async def _poll():
            while text not in sink.text():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    return _wait
