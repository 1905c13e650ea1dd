# tests/test_job_runner/test_job_supersede.py
import asyncio

import pytest

from project_tasks.job import JobState


@pytest.mark.asyncio
async def test_new_run_cancels_active_job(runner, make_command, sleeper, wait_for_text, sink):
    first_sink = sink
    first = await runner.run(make_command(sleeper, task_name="run"), first_sink)
    await wait_for_text(first_sink, "started")

    second_sink = type(first_sink)()
    second = await runner.run(make_command("print('second')", task_name="build"), second_sink)

    # The old process is reaped before the new one is spawned
    assert first.state is JobState.CANCELLED
    assert first.error == "Superseded by 'build'"
    assert first_sink.finishes == [("finish", JobState.CANCELLED)]
    assert runner.current_job is second.job

    job = await second.wait(timeout=10)
    assert job.state is JobState.SUCCEEDED
    assert second_sink.text() == "second\n"
    assert first_sink.events[-1] == ("finish", JobState.CANCELLED)


@pytest.mark.asyncio
async def test_rapid_runs_leave_only_last_job(runner, make_command, sleeper, sink):
    sinks = [type(sink)() for _ in range(3)]
    handles = [await runner.run(make_command(sleeper, task_name=f"job{i}"), s) for i, s in enumerate(sinks[:2])]
    last = await runner.run(make_command("print('last')", task_name="job2"), sinks[2])
    handles.append(last)

    await last.wait(timeout=10)

    assert [h.state for h in handles] == [JobState.CANCELLED, JobState.CANCELLED, JobState.SUCCEEDED]
    for s in sinks:
        assert len(s.finishes) == 1
    assert runner.state is JobState.IDLE


@pytest.mark.asyncio
async def test_concurrent_run_calls_are_serialized(runner, make_command, sleeper, sink):
    sinks = [type(sink)() for _ in range(2)]
    first, second = await asyncio.gather(
        runner.run(make_command(sleeper, task_name="a"), sinks[0]),
        runner.run(make_command("print('b')", task_name="b"), sinks[1]),
    )

    await second.wait(timeout=10)

    assert first.state is JobState.CANCELLED
    assert second.state is JobState.SUCCEEDED
    assert sinks[1].text() == "b\n"
    assert runner.current_job is second.job


@pytest.mark.asyncio
async def test_finished_job_is_not_cancelled_by_next_run(runner, make_command, sink):
    first = await runner.run(make_command("print('one')"), sink)
    await first.wait(timeout=10)
    second = await runner.run(make_command("print('two')"))
    await second.wait(timeout=10)
    assert first.state is JobState.SUCCEEDED
    assert sink.finishes == [("finish", JobState.SUCCEEDED)]
