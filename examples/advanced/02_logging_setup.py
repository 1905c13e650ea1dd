"""
Example: Logging Configuration for project-tasks

This example demonstrates the logging helpers: console logging, file
logging, custom formats, propagation control and disabling logging.
"""
# ruff: noqa: T201

import asyncio
import logging
import os
import sys

from project_tasks import (
    Invocation,
    JobRunner,
    ResolvedCommand,
    disable_logging,
    get_log_file_path,
    setup_logging,
)

COMMAND = ResolvedCommand(
    argv=(sys.executable, "-c", "print('Hello from project-tasks!')"),
    cwd=os.getcwd(),
    task_name="hello",
    backend_name="python",
    invocation=Invocation.DIRECT,
)


async def run_once():
    runner = JobRunner()
    handle = await runner.run(COMMAND)
    job = await handle.wait()
    print(f"Result: {job.state.value}")


async def main():
    print("=== Console + File Logging ===")
    setup_logging(level="DEBUG", file=True)
    await run_once()
    print(f"Log file: {get_log_file_path()}\n")

    print("=== Custom Format ===")
    setup_logging(level="INFO", format_string="[%(levelname)s] %(message)s")
    await run_once()

    # Root logger already configured: keep records out of it to avoid duplicates
    print("\n=== With propagate=False ===")
    logging.basicConfig(level=logging.DEBUG, format="ROOT: %(levelname)s - %(name)s - %(message)s")
    setup_logging(level="DEBUG", propagate=False)
    await run_once()

    print("\n=== Detailed Format ===")
    setup_logging(level="INFO", format="detailed")
    await run_once()

    print("\n=== Disable Logging ===")
    disable_logging()
    await run_once()
    print("Job ran but no logs appeared")


if __name__ == "__main__":
    asyncio.run(main())
