from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from . import __version__
from .engine import TaskEngine
from .exceptions import NeedsSelectionError
from .job import JobState
from .logging_config import LOG_DIR, disable_logging, setup_logging
from .output_sink import ListSink, OutputSink, TerminalSink
from .session import SessionStore

DEFAULT_SESSION_FILE = LOG_DIR / "session.json"

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split ``argv`` at the first '--'; everything after goes to the task."""
    if "--" in argv:
        i = argv.index("--")
        return argv[:i], argv[i + 1 :]
    return argv, []


def _parse_selections(pairs: list[str]) -> dict[str, str]:
    selections: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got '{pair}'")
        selections[key] = value
    return selections


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="project-tasks",
        description="Detect the project around a directory and run its configure/build/run/test tasks.",
        epilog="Arguments after '--' are passed to run, debug and test.",
    )
    p.add_argument("task", nargs="?", help="Task to run (configure, build, run, debug, test, clean, package)")
    p.add_argument("-C", "--directory", default=".", help="Start detection here (default: current directory)")
    p.add_argument("--prompt", action="store_true", help="Re-select presets/targets instead of reusing the last choice")
    p.add_argument(
        "--set",
        dest="selections",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Choose a value, e.g. --set preset=debug (remembered for next time)",
    )
    p.add_argument("--list", action="store_true", help="List tasks available for the detected project")
    p.add_argument("--info", action="store_true", help="Print detected project info as JSON")
    p.add_argument("--mode", choices=("terminal", "list"), default="terminal", help="Output style")
    p.add_argument(
        "--session",
        default=str(DEFAULT_SESSION_FILE),
        help=f"Session file for remembered selections (default: {DEFAULT_SESSION_FILE}); '' keeps them in memory",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _exit_code(state: JobState) -> int:
    if state is JobState.SUCCEEDED:
        return EXIT_SUCCESS
    if state is JobState.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def _print_list_sink(sink: ListSink) -> None:
    print(sink.title)
    for entry in sink.entries:
        print(entry["text"])


async def _run(engine: TaskEngine, args: argparse.Namespace, passthrough: list[str], selections: dict[str, str]) -> int:
    sink: OutputSink = TerminalSink(echo=sys.stdout) if args.mode == "terminal" else ListSink()

    # Ctrl-C cancels the job; the cancels are awaited before the loop closes
    interrupts: list[asyncio.Future[bool]] = []
    loop = asyncio.get_running_loop()
    handles_sigint = sys.platform != "win32"
    if handles_sigint:
        loop.add_signal_handler(signal.SIGINT, lambda: interrupts.append(asyncio.ensure_future(engine.cancel())))

    try:
        return await _run_task(engine, args, passthrough, selections, sink)
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        await asyncio.gather(*interrupts)


async def _run_task(
    engine: TaskEngine,
    args: argparse.Namespace,
    passthrough: list[str],
    selections: dict[str, str],
    sink: OutputSink,
) -> int:
    async with engine:
        try:
            handle = await engine.run_task(
                args.task,
                start_dir=args.directory,
                prompt=args.prompt,
                selections=selections,
                args=passthrough,
                sink=sink,
            )
        except NeedsSelectionError as e:
            print(f"{args.task}: choose a value for '{e.key}':", file=sys.stderr)
            for choice in e.choices:
                print(f"  {choice!r}" if choice == "" else f"  {choice}", file=sys.stderr)
            print(f"Re-run with --set {e.key}=<value>", file=sys.stderr)
            return EXIT_USAGE

        if handle is None:
            if isinstance(sink, ListSink):
                _print_list_sink(sink)
            return EXIT_SUCCESS if args.task == "cancel" else EXIT_FAILED

        job = await handle.wait()
        if isinstance(sink, ListSink):
            _print_list_sink(sink)
        return _exit_code(job.state)


def main(argv: list[str] | None = None) -> int:
    raw = list(sys.argv[1:] if argv is None else argv)
    own, passthrough = _split_passthrough(raw)

    parser = _build_parser()
    args = parser.parse_args(own)

    if args.verbose:
        setup_logging(level="DEBUG", format="detailed")
    else:
        disable_logging()

    try:
        selections = _parse_selections(args.selections)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_USAGE

    session = SessionStore(Path(args.session).expanduser() if args.session else None)
    engine = TaskEngine(session=session)

    if args.info:
        print(json.dumps(engine.info(args.directory), indent=2))
        return EXIT_SUCCESS

    if args.list:
        root = engine.find_root(args.directory)
        if root is None:
            print("No project root found", file=sys.stderr)
            return EXIT_FAILED
        print(f"{engine.get_detected_backend(args.directory)} project at {root}")
        for task in engine.get_available_tasks(root):
            print(f"  {task}")
        return EXIT_SUCCESS

    if not args.task:
        parser.print_usage(sys.stderr)
        return EXIT_USAGE

    return asyncio.run(_run(engine, args, passthrough, selections))


if __name__ == "__main__":
    raise SystemExit(main())
