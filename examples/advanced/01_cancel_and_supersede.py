"""
01_cancel_and_supersede.py - Driving JobRunner directly

This example demonstrates:
- Running ResolvedCommands without detection (JobRunner on its own)
- Cancelling a running job (SIGTERM, then SIGKILL after the grace period)
- Starting a new job while one is active, which cancels the old one first
- ListSink, the line-oriented sink used for problem-list style output

Try it:
    python examples/advanced/01_cancel_and_supersede.py
"""
# ruff: noqa: T201

import asyncio
import os
import sys

from project_tasks import Invocation, JobRunner, ListSink, ResolvedCommand


def python_command(task_name: str, code: str) -> ResolvedCommand:
    return ResolvedCommand(
        argv=(sys.executable, "-u", "-c", code),
        cwd=os.getcwd(),
        task_name=task_name,
        backend_name="python",
        invocation=Invocation.DIRECT,
    )


SLOW = "import time\nfor i in range(100):\n    print('tick', i)\n    time.sleep(0.2)\n"


async def main():
    runner = JobRunner(cancel_grace_period=1.0)

    # Cancel
    sink = ListSink()
    handle = await runner.run(python_command("slow", SLOW), sink)
    await asyncio.sleep(0.7)
    await runner.cancel()
    print(f"{sink.title}: {handle.state.value}")
    for line in sink.lines:
        print(f"  {line}")

    # Supersede
    first = await runner.run(python_command("first", SLOW))
    await asyncio.sleep(0.3)
    second = await runner.run(python_command("second", "print('second ran')"))
    await second.wait(timeout=10)
    print(f"first: {first.state.value} ({first.error})")
    print(f"second: {second.state.value}, output={second.output!r}")

    await runner.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
