"""JobHandle - Public facade over a Job.

Hosts get a JobHandle from TaskEngine.run_task() / JobRunner.run() and use it
to wait for completion and read the outcome. Cancellation goes through the
engine or runner, not through the handle.
"""

from __future__ import annotations

import asyncio

from .job import Job, JobState
from .resolver import ResolvedCommand


class JobHandle:
    """
    Read-only view of a Job plus async waiting.

    The underlying Job is owned and mutated by the JobRunner; the handle only
    observes it.
    """

    def __init__(self, job: Job) -> None:
        self._job = job

    async def wait(self, timeout: float | None = None) -> Job:
        """
        Wait for the job to reach a terminal state.

        Args:
            timeout: Optional timeout in seconds

        Returns:
            The finished Job

        Raises:
            asyncio.TimeoutError: If timeout expires before completion
        """
        # shield: a timed-out wait must not cancel the shared future
        future = asyncio.shield(self._job.future)
        if timeout is not None:
            return await asyncio.wait_for(future, timeout)
        return await future

    # ========================================================================
    # Properties - Read-Only Access to Job
    # ========================================================================

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def task_name(self) -> str:
        return self._job.task_name

    @property
    def command(self) -> ResolvedCommand:
        return self._job.command

    @property
    def state(self) -> JobState:
        """STARTING, RUNNING, SUCCEEDED, FAILED or CANCELLED."""
        return self._job.state

    @property
    def success(self) -> bool | None:
        """
        Whether the job succeeded.

        Returns:
            True on exit code 0, False on failure, None while active or if cancelled
        """
        return self._job.success

    @property
    def exit_code(self) -> int | None:
        return self._job.exit_code

    @property
    def output(self) -> str:
        """Captured stdout + stderr text."""
        return self._job.output

    @property
    def error(self) -> str | Exception | None:
        """Failure message, ProcessSpawnError, or cancellation reason."""
        return self._job.error

    @property
    def duration_str(self) -> str:
        return self._job.duration_str

    @property
    def is_finalized(self) -> bool:
        return self._job.is_finalized

    @property
    def is_cancelled(self) -> bool:
        return self._job.state is JobState.CANCELLED

    @property
    def job(self) -> Job:
        """Direct access to the underlying Job (advanced use)."""
        return self._job

    def __repr__(self) -> str:
        return f"JobHandle(task_name={self.task_name!r}, job_id={self.job_id[:8]!r}, state={self.state.name})"
