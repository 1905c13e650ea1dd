# project_tasks/output_sink.py
"""
Output sinks: where a job's output and final status go.

The runner drives a sink in a fixed order: ``start(job)`` once, ``write()``
for every decoded chunk as it arrives, then ``finish(job)`` exactly once with
the job in a terminal state. ``notify()`` carries engine messages that are
not process output (resolution errors, spawn failures).

Two sinks ship with the package: TerminalSink keeps raw text, ListSink keeps
one ``{"text": ...}`` entry per line, the shape of an editor problem list.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

from .job import Job, JobState

logger = logging.getLogger(__name__)

MARKERS: dict[JobState, str] = {
    JobState.SUCCEEDED: "done",
    JobState.FAILED: "failed",
    JobState.CANCELLED: "cancelled",
}
"""Literal marker for each terminal state, as it appears in status lines."""


def status_line(job: Job) -> str:
    """Final status text, e.g. ``[done] build completed in 1.2s`` or ``[failed] build failed (exit 2)``."""
    marker = MARKERS.get(job.state)
    if marker is None:
        raise ValueError(f"Job {job.short_id} is not finished (state={job.state.value})")

    name = job.task_name
    if job.state is JobState.SUCCEEDED:
        detail = f"completed in {job.duration_str}"
    elif job.state is JobState.CANCELLED:
        detail = "cancelled"
    elif job.exit_code is not None:
        detail = f"failed (exit {job.exit_code})"
    else:
        detail = f"failed: {job.error}"
    return f"[{marker}] {name} {detail}"


class OutputSink(ABC):
    """Receiver of one job's output. A sink instance serves a single job."""

    def start(self, job: Job) -> None:  # noqa: B027
        """Called once before the process is spawned."""

    @abstractmethod
    def write(self, chunk: str, stream: str = "stdout") -> None:
        """Receive decoded output. ``stream`` is 'stdout' or 'stderr'."""
        ...

    def notify(self, message: str, level: int = logging.INFO) -> None:
        """Receive an engine notice (not process output). Default: log it."""
        logger.log(level, message)

    @abstractmethod
    def finish(self, job: Job) -> None:
        """Called exactly once when ``job`` is terminal."""
        ...


class TerminalSink(OutputSink):
    """
    Streaming terminal-like sink.

    Keeps raw chunks in arrival order and optionally echoes them to a text
    stream (e.g. sys.stdout). ``done`` flips when the job finishes.
    """

    def __init__(self, echo: TextIO | None = None, *, show_command: bool = True) -> None:
        self.echo = echo
        self.show_command = show_command
        self.chunks: list[str] = []
        self.notices: list[tuple[int, str]] = []
        self.done = False
        self.status: str | None = None
        self.state: JobState | None = None

    def _emit(self, text: str) -> None:
        if self.echo is not None:
            self.echo.write(text)
            self.echo.flush()

    def start(self, job: Job) -> None:
        if self.show_command:
            self._emit(f"$ {job.command.command_line}\n")

    def write(self, chunk: str, stream: str = "stdout") -> None:
        self.chunks.append(chunk)
        self._emit(chunk)

    def notify(self, message: str, level: int = logging.INFO) -> None:
        self.notices.append((level, message))
        if self.echo is not None:
            print(message, file=sys.stderr if level >= logging.WARNING else self.echo)

    def finish(self, job: Job) -> None:
        self.done = True
        self.state = job.state
        self.status = status_line(job)
        text = self.text
        self._emit(("" if not text or text.endswith("\n") else "\n") + self.status + "\n")

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class ListSink(OutputSink):
    """
    Structured sink: a list of ``{"text": ...}`` entries and a title.

    Layout: ``$ <command>``, a blank entry, one entry per non-empty output
    line, a blank entry, then the status line. Partial lines are buffered per
    stream until their newline (or the end of the job) arrives. Notices are
    entries with an extra ``"type"`` key ('E', 'W' or 'I').
    """

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []
        self.title = ""
        self.done = False
        self._task_name = ""
        self._partial: dict[str, str] = {}

    def start(self, job: Job) -> None:
        self._task_name = job.task_name
        self.title = f"{job.task_name} (running...)"
        self.entries = [{"text": f"$ {job.command.command_line}"}, {"text": ""}]

    def _add_line(self, line: str) -> None:
        line = line.rstrip("\r")
        if line:
            self.entries.append({"text": line})

    def write(self, chunk: str, stream: str = "stdout") -> None:
        pending = self._partial.pop(stream, "") + chunk
        *complete, rest = pending.split("\n")
        for line in complete:
            self._add_line(line)
        if rest:
            self._partial[stream] = rest

    def notify(self, message: str, level: int = logging.INFO) -> None:
        kind = "E" if level >= logging.ERROR else "W" if level >= logging.WARNING else "I"
        self.entries.append({"text": message, "type": kind})

    def finish(self, job: Job) -> None:
        for stream in list(self._partial):
            self._add_line(self._partial.pop(stream))
        self.entries.append({"text": ""})
        self.entries.append({"text": status_line(job)})
        self.title = f"{job.task_name} [{MARKERS[job.state]}]"
        self.done = True

    @property
    def lines(self) -> list[str]:
        return [entry["text"] for entry in self.entries]
