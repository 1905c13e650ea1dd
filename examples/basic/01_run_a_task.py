"""
01_run_a_task.py - Minimal project-tasks example

This example demonstrates:
- Detecting a project from a directory with TaskEngine
- Listing the tasks its backend supports
- Running a task and waiting for it with handle.wait()

The example builds a throwaway CMake project whose only run target is
declared in .project-tasks.toml, so it works without cmake installed.

Try it:
    python examples/basic/01_run_a_task.py
"""
# ruff: noqa: T201

import asyncio
import sys
import tempfile
from pathlib import Path

from project_tasks import TaskEngine, TerminalSink


def make_project(root: Path) -> None:
    (root / "CMakeLists.txt").write_text("cmake_minimum_required(VERSION 3.20)\nproject(demo)\n")
    (root / ".project-tasks.toml").write_text(
        "[targets.hello]\n"
        f"path = {sys.executable!r}\n"
        "args = ['-c', 'import sys; print(\"Hello from\", sys.argv[1:])']\n"
    )


async def main():
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        make_project(root)

        # Step 1: Detection walks up from start_dir to the nearest marker file
        async with TaskEngine() as engine:
            print(f"Backend: {engine.get_detected_backend(root)}")
            print(f"Tasks:   {', '.join(engine.get_available_tasks(root))}")

            # Step 2: run_task() returns a JobHandle as soon as the job is started.
            # The only target is picked automatically and remembered in the session.
            handle = await engine.run_task(
                "run", start_dir=root, args=["project-tasks"], sink=TerminalSink(echo=sys.stdout)
            )
            if handle is None:
                print("Task could not be started")
                return

            # Step 3: Wait for the terminal state
            job = await handle.wait(timeout=10.0)
            print(f"State: {job.state.value}, exit code: {job.exit_code}, took {job.duration_str}")
            print(f"Session: {engine.session.snapshot(root)}")


if __name__ == "__main__":
    asyncio.run(main())
