# project_tasks/job_runner.py
"""
JobRunner - runs one resolved command at a time as an asyncio subprocess.

- stdout and stderr on separate pipes, read concurrently and streamed to the
  sink chunk by chunk (decoded incrementally as UTF-8)
- Supersede policy: starting a job while another is active cancels the old
  one and waits for its process to be reaped before spawning
- Graceful cancellation of the whole process group (SIGTERM, then SIGKILL
  after a grace period)
- No timeouts; jobs run until exit or cancel
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal

from .exceptions import ProcessSpawnError
from .job import Job, JobState
from .job_handle import JobHandle
from .output_sink import OutputSink, TerminalSink
from .resolver import ResolvedCommand

logger = logging.getLogger(__name__)

# Extra seconds a cancelled job gets to close its pipes after the process exits
PIPE_CLOSE_TIMEOUT = 1.0


class JobRunner:
    """
    Tracks at most one job and its child process.

    State is IDLE when there is no job, or once the current job's terminal
    state has been delivered to its sink; otherwise it is the job's state
    (STARTING or RUNNING).
    """

    def __init__(self, cancel_grace_period: float = 3.0, chunk_size: int = 4096):
        """
        Initialize the runner.

        Args:
            cancel_grace_period: Seconds to wait after SIGTERM before SIGKILL
            chunk_size: Maximum bytes read from a pipe per chunk
        """
        if cancel_grace_period < 0:
            raise ValueError("cancel_grace_period cannot be negative")
        self.cancel_grace_period = cancel_grace_period
        self._chunk_size = chunk_size

        self._job: Job | None = None
        self._sink: OutputSink | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task[None] | None = None

        # Serializes run() calls so supersede never overlaps two processes
        self._lock = asyncio.Lock()

        logger.debug(f"Initialized JobRunner (cancel_grace_period={cancel_grace_period}s)")

    # ================================================================
    # State
    # ================================================================
    @property
    def state(self) -> JobState:
        job = self._job
        if job is None or job.reported:
            return JobState.IDLE
        return job.state

    @property
    def is_running(self) -> bool:
        return self.state in (JobState.STARTING, JobState.RUNNING)

    @property
    def current_job(self) -> Job | None:
        """The most recent job (active or finished), or None before the first run."""
        return self._job

    # ================================================================
    # Public API
    # ================================================================
    async def run(self, command: ResolvedCommand, sink: OutputSink | None = None) -> JobHandle:
        """
        Start ``command`` in the background and return a handle to it.

        An active job is cancelled first and its process reaped before the new
        process is spawned. Spawn failures do not raise: the job is marked
        FAILED with a ProcessSpawnError and reported to the sink.
        """
        async with self._lock:
            if self.is_running:
                logger.info(f"Superseding job {self._job.short_id} ('{self._job.task_name}') with '{command.task_name}'")
                await self.cancel(f"Superseded by '{command.task_name}'")
            await self._drain()

            sink = sink if sink is not None else TerminalSink()
            job = Job(command=command)
            self._job = job
            self._sink = sink

            logger.info(f"Starting job {job.short_id}: {command.command_line}")
            sink.start(job)
            self._task = asyncio.create_task(self._monitor(job, sink), name=f"job_{job.short_id}")
            return JobHandle(job)

    async def cancel(self, reason: str | None = None) -> bool:
        """
        Cancel the active job.

        The job flips to CANCELLED and is reported to its sink before the
        process is signalled. Returns False (and does nothing) when there is
        no active job.
        """
        job = self._job
        if job is None or job.is_finalized:
            logger.debug("No active job to cancel")
            return False

        logger.info(f"Cancelling job {job.short_id} ('{job.task_name}')")
        job.mark_cancelled(reason or "Cancelled by user")
        self._report(job, self._sink)

        process = self._process
        if process is None:
            # Let the monitor kill a process spawned during STARTING
            await self._drain()
            return True

        if process.returncode is None:
            await self._terminate(process, job)
        # Descendants outside the process group may still hold the pipes open
        await self._drain(timeout=self.cancel_grace_period + PIPE_CLOSE_TIMEOUT)
        return True

    async def shutdown(self) -> None:
        """Cancel any active job and wait for its process to be reaped."""
        if await self.cancel("Shutting down"):
            logger.info("JobRunner shut down with an active job cancelled")
        await self._drain()

    # ================================================================
    # Monitoring
    # ================================================================
    async def _monitor(self, job: Job, sink: OutputSink) -> None:
        """Spawn the process, stream its output and record the outcome."""
        command = job.command
        env = {**os.environ, **command.env}

        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=command.cwd,
                env=env,
                # Start in new process group for better signal handling
                preexec_fn=os.setpgrp if os.name != "nt" else None,
            )
        except OSError as e:
            error = ProcessSpawnError(command.argv, e)
            logger.warning(f"Job {job.short_id}: {error}")
            if job.mark_failed(error):
                sink.notify(str(error), logging.ERROR)
                self._report(job, sink)
            return

        self._process = process
        try:
            if job.is_finalized:
                # Cancelled while the process was being spawned
                logger.debug(f"Job {job.short_id} cancelled during start; killing pid {process.pid}")
                await self._kill(process)
                return

            job.mark_running(process.pid)
            await asyncio.gather(
                self._pump(job, sink, process.stdout, "stdout"),
                self._pump(job, sink, process.stderr, "stderr"),
            )
            returncode = await process.wait()

            if returncode == 0:
                finished = job.mark_succeeded(returncode)
            else:
                finished = job.mark_failed(f"Command exited with code {returncode}", exit_code=returncode)
            if finished:
                self._report(job, sink)

        except asyncio.CancelledError:
            logger.debug(f"Monitor task for job {job.short_id} was cancelled")
            if process.returncode is None:
                await self._kill(process)
            raise

        except Exception as e:
            logger.exception(f"Unexpected error monitoring job {job.short_id}: {e}")
            if process.returncode is None:
                await self._kill(process)
            if job.mark_failed(e):
                self._report(job, sink)

        finally:
            if self._process is process:
                self._process = None
            logger.debug(f"Cleaned up process state for job {job.short_id}")

    async def _pump(
        self,
        job: Job,
        sink: OutputSink,
        reader: asyncio.StreamReader | None,
        stream: str,
    ) -> None:
        """Forward one pipe to the sink until EOF."""
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(self._chunk_size)
            text = decoder.decode(data, final=not data)
            # Output arriving after cancel is drained but no longer delivered
            if text and not job.is_finalized:
                job.append_output(text, stream)
                sink.write(text, stream)
            if not data:
                return

    # ================================================================
    # Helpers
    # ================================================================
    def _report(self, job: Job, sink: OutputSink | None) -> None:
        """Deliver the terminal state to the sink, once."""
        if job.reported:
            return
        job.reported = True
        if sink is not None:
            sink.finish(job)
        logger.info(f"Job {job.short_id} ('{job.task_name}') {job.state.value} in {job.duration_str}")

    async def _drain(self, timeout: float | None = None) -> None:
        """
        Wait for the monitor task of the previous job to exit.

        With a timeout, a monitor still blocked on open pipes is cancelled
        once it expires so the caller never waits on stray descendants.
        """
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if done:
            return

        logger.warning(f"Output pipes still open {timeout}s after cancel; abandoning them")
        process = self._process
        if process is not None:
            self._signal(process, force=True)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _terminate(self, process: asyncio.subprocess.Process, job: Job) -> None:
        """SIGTERM the process group, wait for the grace period, then SIGKILL."""
        logger.debug(f"Sending SIGTERM to job {job.short_id} (pid {process.pid})")
        if not self._signal(process, force=False):
            logger.debug(f"Process for job {job.short_id} already dead")
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.cancel_grace_period)
            logger.debug(f"Job {job.short_id} terminated gracefully")
        except asyncio.TimeoutError:
            logger.warning(f"Job {job.short_id} didn't terminate, sending SIGKILL")
            await self._kill(process)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Forcefully kill the process group with SIGKILL and reap the process."""
        self._signal(process, force=True)
        await process.wait()

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, force: bool) -> bool:
        """
        Signal the process and everything in its process group.

        Children are spawned as group leaders, so on POSIX the group id is the
        pid. Returns False when nothing was left to signal.
        """
        try:
            if os.name != "nt":
                os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            return False
        except PermissionError:
            # The group id was reused by a process we don't own
            if process.returncode is not None:
                return False
            if force:
                process.kill()
            else:
                process.terminate()
        return True

    def __repr__(self) -> str:
        return f"JobRunner(state={self.state.value}, cancel_grace_period={self.cancel_grace_period}s)"
