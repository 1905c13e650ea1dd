"""
02_selections.py - Answering NeedsSelectionError

When a task needs a value the engine cannot pick on its own (two configure
presets, several run targets), it raises NeedsSelectionError with the
choices. The host asks the user and calls again with selections={...};
the engine remembers the answer for the next call.

This example only resolves commands, so cmake does not need to be installed.

Try it:
    python examples/basic/02_selections.py
"""
# ruff: noqa: T201

import json
import tempfile
from pathlib import Path

from project_tasks import NeedsSelectionError, TaskEngine

PRESETS = {
    "version": 6,
    "configurePresets": [
        {"name": "base", "hidden": True, "binaryDir": "${sourceDir}/build/${presetName}"},
        {"name": "debug", "inherits": "base"},
        {"name": "release", "inherits": "base"},
    ],
}


def ask(err: NeedsSelectionError) -> str:
    """Stand-in for a picker UI: always take the last choice."""
    print(f"  engine asks for '{err.key}' from {err.choices}")
    return err.choices[-1]


def resolve_with_answers(engine: TaskEngine, task: str, root: Path, prompt: bool = False):
    selections: dict[str, str] = {}
    while True:
        try:
            return engine.resolve_task(task, start_dir=root, prompt=prompt, selections=selections)
        except NeedsSelectionError as e:
            selections[e.key] = ask(e)


def main():
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        (root / "CMakeLists.txt").write_text("project(demo)\n")
        (root / "CMakePresets.json").write_text(json.dumps(PRESETS))

        engine = TaskEngine()

        print("First configure:")
        cmd = resolve_with_answers(engine, "configure", root)
        print(f"  {cmd.command_line}")

        print("Second configure reuses the remembered preset:")
        cmd = resolve_with_answers(engine, "configure", root)
        print(f"  {cmd.command_line}")

        print("prompt=True asks again:")
        cmd = resolve_with_answers(engine, "configure", root, prompt=True)
        print(f"  {cmd.command_line}")

        print(f"Session: {engine.session.snapshot(root)}")


if __name__ == "__main__":
    main()
