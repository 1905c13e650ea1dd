# project_tasks/job.py
from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .resolver import ResolvedCommand

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle of a job. IDLE is only ever reported by the runner, never held by a Job."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})


@dataclass
class Job:
    """
    One execution of a resolved command.

    Internal mutable object owned by JobRunner. Hosts read it through the
    JobHandle facade. Terminal transitions happen at most once: the first of
    exit or cancel wins and later ones are ignored.
    """

    command: ResolvedCommand

    # ------------------------------------------------------------------ #
    # Identification
    # ------------------------------------------------------------------ #
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    state: JobState = JobState.STARTING

    # ------------------------------------------------------------------ #
    # Process & result
    # ------------------------------------------------------------------ #
    pid: int | None = None

    exit_code: int | None = None
    """Process exit code; None if the process never started or was cancelled first."""

    error: str | Exception | None = None
    """Failure reason (message or ProcessSpawnError) or cancellation reason."""

    chunks: list[tuple[str, str]] = field(default_factory=list)
    """(stream, text) pairs in arrival order; order is only guaranteed within a stream."""

    reported: bool = False
    """Set by the runner once the terminal state has been delivered to the sink."""

    # ------------------------------------------------------------------ #
    # Timing
    # ------------------------------------------------------------------ #
    start_time: datetime.datetime | None = None
    end_time: datetime.datetime | None = None
    duration: datetime.timedelta | None = None

    _future: asyncio.Future[Job] | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def task_name(self) -> str:
        return self.command.task_name

    @property
    def short_id(self) -> str:
        return self.job_id[:8]

    # ------------------------------------------------------------------ #
    # State transitions
    # ------------------------------------------------------------------ #
    def mark_running(self, pid: int | None = None) -> None:
        """Transition STARTING -> RUNNING once the process exists."""
        if self.state is not JobState.STARTING:
            logger.warning(f"Job {self.short_id} marked running from invalid state {self.state}")
            return
        self.state = JobState.RUNNING
        self.pid = pid
        self.start_time = datetime.datetime.now()
        logger.debug(f"Job {self.short_id} ('{self.task_name}') running, pid={pid}")

    def mark_succeeded(self, exit_code: int = 0) -> bool:
        if not self._enter(JobState.SUCCEEDED):
            return False
        self.exit_code = exit_code
        self._finalize()
        logger.debug(f"Job {self.short_id} ('{self.task_name}') succeeded in {self.duration_str}")
        return True

    def mark_failed(self, error: str | Exception, exit_code: int | None = None) -> bool:
        if not self._enter(JobState.FAILED):
            return False
        self.error = error
        self.exit_code = exit_code
        self._finalize()
        logger.debug(f"Job {self.short_id} ('{self.task_name}') failed: {error}")
        return True

    def mark_cancelled(self, reason: str | None = None) -> bool:
        if not self._enter(JobState.CANCELLED):
            return False
        self.error = reason or "Cancelled"
        self._finalize()
        logger.debug(f"Job {self.short_id} ('{self.task_name}') cancelled")
        return True

    def _enter(self, state: JobState) -> bool:
        if self.is_finalized:
            logger.debug(f"Job {self.short_id} already {self.state.value}; ignoring {state.value}")
            return False
        self.state = state
        return True

    def _finalize(self) -> None:
        """Record end time, compute duration, and signal the future."""
        self.end_time = datetime.datetime.now()
        if self.start_time:
            self.duration = self.end_time - self.start_time
        else:
            self.duration = datetime.timedelta(0)

        if self._future is not None and not self._future.done():
            self._future.set_result(self)

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #
    def append_output(self, text: str, stream: str = "stdout") -> None:
        self.chunks.append((stream, text))

    @property
    def output(self) -> str:
        """All captured text, both streams, in arrival order."""
        return "".join(text for _, text in self.chunks)

    def stream_output(self, stream: str) -> str:
        return "".join(text for s, text in self.chunks if s == stream)

    # ------------------------------------------------------------------ #
    # Completion
    # ------------------------------------------------------------------ #
    @property
    def future(self) -> asyncio.Future[Job]:
        """
        Future resolved with this job when it reaches a terminal state.

        Created on first access, so it must be read inside a running loop.
        """
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self.is_finalized:
                self._future.set_result(self)
        return self._future

    @property
    def is_finalized(self) -> bool:
        return self.state.is_terminal

    @property
    def success(self) -> bool | None:
        """True/False once succeeded/failed; None while active or when cancelled."""
        if self.state is JobState.SUCCEEDED:
            return True
        if self.state is JobState.FAILED:
            return False
        return None

    # ------------------------------------------------------------------ #
    # Timing properties
    # ------------------------------------------------------------------ #
    @property
    def duration_secs(self) -> float | None:
        return self.duration.total_seconds() if self.duration is not None else None

    @property
    def duration_str(self) -> str:
        """Human-readable duration (e.g. '452ms', '2.4s', '1m 23s', '2h 5m')."""
        secs = self.duration_secs
        if secs is None:
            return "-"
        if secs < 1:
            return f"{secs * 1000:.0f}ms"
        if secs < 60:
            return f"{secs:.1f}s"
        mins, secs = divmod(secs, 60)
        if mins < 60:
            return f"{int(mins)}m {secs:.0f}s"
        hrs, mins = divmod(mins, 60)
        return f"{int(hrs)}h {int(mins)}m"

    # ------------------------------------------------------------------ #
    # Representation & serialization
    # ------------------------------------------------------------------ #
    def __repr__(self) -> str:
        return (
            f"Job(id={self.short_id}, task='{self.task_name}', "
            f"state={self.state.value}, exit={self.exit_code}, dur={self.duration_str})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "backend": self.command.backend_name,
            "argv": list(self.command.argv),
            "cwd": self.command.cwd,
            "invocation": self.command.invocation.value,
            "state": self.state.value,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "error": str(self.error) if self.error else None,
            "output": self.output,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_str": self.duration_str,
            "env_keys": list(self.command.env.keys()),
        }
