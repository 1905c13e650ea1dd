# tests/test_engine.py
import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from project_tasks import TaskEngine
from project_tasks.backend import Backend, TaskTemplate
from project_tasks.exceptions import NeedsSelectionError
from project_tasks.file_api import query_dir
from project_tasks.job import JobState
from project_tasks.load_config import PROJECT_CONFIG_FILE
from project_tasks.output_sink import ListSink, TerminalSink
from project_tasks.session import SessionStore

logging.getLogger("project_tasks").setLevel(logging.DEBUG)


SCRIPT = Backend(
    name="script",
    markers=("tasks.marker",),
    tasks={
        "run": TaskTemplate(cmd=(sys.executable, "${entry_point}"), args_passthrough=True),
        "test": TaskTemplate(cmd=(sys.executable, "-c", "import sys; sys.exit(3)")),
    },
    variables={"entry_point": "main.py"},
)


@pytest.fixture
def script_project(tmp_path):
    (tmp_path / "tasks.marker").write_text("")
    (tmp_path / "main.py").write_text(
        "import os, sys\n"
        "print('args', sys.argv[1:])\n"
        "print('mode', os.environ.get('APP_MODE'))\n"
        "print('oops', file=sys.stderr)\n"
    )
    return tmp_path


@pytest.fixture
def script_engine(registry):
    return TaskEngine(registry=registry.register(SCRIPT))


def python_target(root: Path, name="app", code="print('from target')"):
    """Declare a run target that is the current interpreter running ``code``."""
    (root / PROJECT_CONFIG_FILE).write_text(
        f"[targets.{name}]\n"
        f"path = {sys.executable!r}\n"
        f"args = ['-c', {code!r}]\n"
    )


# ────────────────────────────────────────────────────────────────
# Detection
# ────────────────────────────────────────────────────────────────
def test_detect_cmake_from_subdir(cmake_plain_project):
    sub = cmake_plain_project / "src" / "lib"
    sub.mkdir(parents=True)
    engine = TaskEngine()
    assert engine.find_root(sub) == cmake_plain_project
    assert engine.get_detected_backend(sub) == "cmake"


def test_available_tasks(cmake_plain_project, python_project):
    engine = TaskEngine()
    assert engine.get_available_tasks(cmake_plain_project) == [
        "configure", "build", "run", "debug", "test", "clean", "package", "cancel",
    ]
    assert engine.get_available_tasks(python_project) == ["run", "debug", "test", "package", "cancel"]


def test_available_tasks_without_project(tmp_path):
    engine = TaskEngine()
    assert engine.get_available_tasks(None) == []
    assert engine.get_available_tasks(tmp_path) == []


def test_load_presets_degrades_on_cycle(cmake_plain_project, write_presets):
    write_presets(
        cmake_plain_project,
        {"configurePresets": [{"name": "a", "inherits": "b"}, {"name": "b", "inherits": "a"}]},
    )
    assert TaskEngine().load_presets(cmake_plain_project) is None


# ────────────────────────────────────────────────────────────────
# Resolution through the engine
# ────────────────────────────────────────────────────────────────
def test_resolve_task_outside_project(tmp_path):
    assert TaskEngine().resolve_task("build", start_dir=tmp_path) is None


def test_selections_are_remembered(cmake_presets_project):
    engine = TaskEngine()
    with pytest.raises(NeedsSelectionError) as exc_info:
        engine.resolve_task("configure", start_dir=cmake_presets_project)
    assert exc_info.value.key == "preset"
    assert exc_info.value.choices == ["debug", "release"]

    resolved = engine.resolve_task("configure", start_dir=cmake_presets_project, selections={"preset": "debug"})
    assert resolved.argv[:3] == ("cmake", "--preset", "debug")
    assert engine.session.get(cmake_presets_project, "preset") == "debug"

    # Next call needs no selection
    again = engine.resolve_task("configure", start_dir=cmake_presets_project)
    assert again.argv[:3] == ("cmake", "--preset", "debug")


def test_prompt_reasks_even_with_session_value(cmake_presets_project):
    engine = TaskEngine()
    engine.select(cmake_presets_project, "preset", "release")
    with pytest.raises(NeedsSelectionError):
        engine.resolve_task("configure", start_dir=cmake_presets_project, prompt=True)
    resolved = engine.resolve_task(
        "configure", start_dir=cmake_presets_project, prompt=True, selections={"preset": "debug"}
    )
    assert resolved.variables["preset"] == "debug"


def test_auto_selected_target_is_remembered(cmake_plain_project):
    python_target(cmake_plain_project)
    engine = TaskEngine()
    resolved = engine.resolve_task("run", start_dir=cmake_plain_project)
    assert resolved.argv[0] == sys.executable
    assert engine.session.get(cmake_plain_project, "target") == "app"


def test_rejected_selection_is_not_remembered(cmake_presets_project):
    engine = TaskEngine()
    with pytest.raises(NeedsSelectionError) as exc_info:
        engine.resolve_task("configure", start_dir=cmake_presets_project, selections={"preset": "typo"})
    assert exc_info.value.key == "preset"
    assert engine.session.get(cmake_presets_project, "preset") is None

    # A stored value is not replaced by a rejected one either
    engine.select(cmake_presets_project, "preset", "release")
    with pytest.raises(NeedsSelectionError):
        engine.resolve_task("configure", start_dir=cmake_presets_project, selections={"preset": "typo"})
    assert engine.session.get(cmake_presets_project, "preset") == "release"


def test_earlier_choices_kept_while_another_is_needed(cmake_build_presets_project):
    root = cmake_build_presets_project
    engine = TaskEngine()
    with pytest.raises(NeedsSelectionError) as exc_info:
        engine.resolve_task("build", start_dir=root, prompt=True, selections={"preset": "debug"})
    assert exc_info.value.key == "build_preset"
    assert exc_info.value.accepted == {"preset": "debug"}
    assert engine.session.get(root, "preset") == "debug"

    with pytest.raises(NeedsSelectionError):
        engine.resolve_task("build", start_dir=root, selections={"build_preset": "nope"})
    assert engine.session.get(root, "build_preset") is None

    resolved = engine.resolve_task("build", start_dir=root, selections={"build_preset": "debug-build"})
    assert resolved.variables["build_preset"] == "debug-build"
    assert engine.session.get(root, "build_preset") == "debug-build"


# ────────────────────────────────────────────────────────────────
# Running
# ────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_run_streams_output(script_engine, script_project):
    sink = TerminalSink()
    async with script_engine as engine:
        handle = await engine.run_task(
            "run", start_dir=script_project, args=["--fast"], env={"APP_MODE": "dev"}, sink=sink
        )
        job = await handle.wait(timeout=10)

    assert job.state is JobState.SUCCEEDED
    assert job.exit_code == 0
    assert "args ['--fast']" in job.stream_output("stdout")
    assert "mode dev" in job.stream_output("stdout")
    assert "oops" in job.stream_output("stderr")
    assert sink.done
    assert sink.status.startswith("[done] run completed in ")
    assert not engine.is_task_running()
    assert engine.last_job is job


@pytest.mark.asyncio
async def test_run_failure_reports_exit_code(script_engine, script_project):
    sink = ListSink()
    handle = await script_engine.run_task("test", start_dir=script_project, sink=sink)
    job = await handle.wait(timeout=10)
    assert job.state is JobState.FAILED
    assert job.exit_code == 3
    assert sink.lines[-1] == "[failed] test failed (exit 3)"
    assert sink.title == "test [failed]"
    await script_engine.shutdown()


@pytest.mark.asyncio
async def test_run_declared_target_in_cmake_project(cmake_plain_project):
    python_target(cmake_plain_project)
    sink = TerminalSink()
    async with TaskEngine() as engine:
        handle = await engine.run_task("run", start_dir=cmake_plain_project, sink=sink)
        job = await handle.wait(timeout=10)
    assert job.success
    assert sink.text.strip() == "from target"


@pytest.mark.asyncio
async def test_problems_become_notices(tmp_path_factory, cmake_plain_project, python_project):
    engine = TaskEngine()

    sink = TerminalSink()
    assert await engine.run_task("build", start_dir=tmp_path_factory.mktemp("empty"), sink=sink) is None
    assert sink.notices == [(logging.WARNING, "No project root found")]

    sink = TerminalSink()
    assert await engine.run_task("configure", start_dir=python_project, sink=sink) is None
    assert "configure" in sink.notices[0][1]

    sink = TerminalSink()
    assert await engine.run_task("build", start_dir=cmake_plain_project, sink=sink) is None
    assert sink.notices[0][0] == logging.WARNING

    sink = TerminalSink()
    assert await engine.run_task("run", start_dir=cmake_plain_project, sink=sink) is None
    assert len(sink.notices) == 1
    assert not engine.is_task_running()


@pytest.mark.asyncio
async def test_invalid_project_config_becomes_notice(python_project):
    (python_project / PROJECT_CONFIG_FILE).write_text("[runner]\ncancel_grace_period = -2\n")
    sink = TerminalSink()
    assert await TaskEngine().run_task("run", start_dir=python_project, sink=sink) is None
    assert "negative" in sink.notices[0][1]


@pytest.mark.asyncio
async def test_needs_selection_propagates(cmake_presets_project):
    engine = TaskEngine()
    with pytest.raises(NeedsSelectionError) as exc_info:
        await engine.run_task("configure", start_dir=cmake_presets_project, sink=TerminalSink())
    assert exc_info.value.task_name == "configure"


@pytest.mark.asyncio
async def test_configure_seeds_file_api_query(cmake_presets_project):
    runner = MagicMock()
    runner.run = AsyncMock(return_value="handle")
    engine = TaskEngine(runner=runner)

    result = await engine.run_task(
        "configure", start_dir=cmake_presets_project, selections={"preset": "debug"}, sink=TerminalSink()
    )

    assert result == "handle"
    binary_dir = cmake_presets_project / "build" / "debug"
    assert query_dir(binary_dir).is_dir()
    resolved, sink = runner.run.call_args.args
    assert resolved.binary_dir == str(binary_dir)


@pytest.mark.asyncio
async def test_project_grace_period_applies_to_runner(python_project):
    (python_project / PROJECT_CONFIG_FILE).write_text("[runner]\ncancel_grace_period = 0.5\n")
    runner = MagicMock()
    runner.run = AsyncMock(return_value=None)
    engine = TaskEngine(runner=runner)
    await engine.run_task("package", start_dir=python_project, sink=TerminalSink())
    assert runner.cancel_grace_period == 0.5


@pytest.mark.asyncio
async def test_cancel_task(script_engine, script_project):
    (script_project / "main.py").write_text("import time\nprint('started', flush=True)\ntime.sleep(30)\n")
    sink = TerminalSink()
    handle = await script_engine.run_task("run", start_dir=script_project, sink=sink)

    assert script_engine.is_task_running()
    assert await script_engine.run_task("cancel") is None

    job = await handle.wait(timeout=10)
    assert job.state is JobState.CANCELLED
    assert sink.status == "[cancelled] run cancelled"
    assert not script_engine.is_task_running()
    assert await script_engine.cancel() is False


# ────────────────────────────────────────────────────────────────
# Introspection
# ────────────────────────────────────────────────────────────────
def test_info_cmake_project(cmake_presets_project, file_api_reply, mark_configured):
    binary_dir = mark_configured(cmake_presets_project / "build" / "debug")
    file_api_reply(binary_dir, [("app", "EXECUTABLE", "bin/app"), ("core", "STATIC_LIBRARY", "libcore.a")])

    engine = TaskEngine(session=SessionStore())
    engine.select(cmake_presets_project, "preset", "debug")
    info = engine.info(cmake_presets_project)

    assert info["root"] == str(cmake_presets_project)
    assert info["backend"] == "cmake"
    assert info["presets"] == ["debug", "release"]
    assert info["session"] == {"preset": "debug"}
    assert info["binary_dir"] == str(binary_dir)
    assert info["configured"] is True
    assert info["targets"] == ["app", "core"]
    assert info["running"] is False


def test_info_python_project(python_project):
    info = TaskEngine().info(python_project)
    assert info["backend"] == "python"
    assert "presets" not in info


def test_info_no_project(tmp_path):
    assert TaskEngine().info(tmp_path) == {"root": None, "backend": None, "tasks": []}


def test_repr():
    assert "cmake" in repr(TaskEngine())


def test_info_fallback_binary_dir_follows_build_dir(cmake_plain_project, file_api_reply, mark_configured):
    (cmake_plain_project / PROJECT_CONFIG_FILE).write_text('[variables]\nbuild_dir = "out"\n')
    binary_dir = mark_configured(cmake_plain_project / "out")
    file_api_reply(binary_dir, [("app", "EXECUTABLE", "app")])

    engine = TaskEngine()
    info = engine.info(cmake_plain_project)

    assert info["presets"] is None
    assert info["binary_dir"] == str(binary_dir)
    assert info["configured"] is True
    assert info["targets"] == ["app"]
    assert engine.resolve_task("build", start_dir=cmake_plain_project).binary_dir == info["binary_dir"]


def test_info_without_visible_presets_uses_fallback_dir(cmake_plain_project, write_presets):
    write_presets(cmake_plain_project, {"version": 3, "configurePresets": [{"name": "base", "hidden": True}]})
    info = TaskEngine().info(cmake_plain_project)
    assert info["presets"] == []
    assert info["binary_dir"] == str(cmake_plain_project / "build")
    assert info["configured"] is False


def test_info_with_single_preset_uses_its_dir(cmake_plain_project, write_presets):
    write_presets(cmake_plain_project, {"version": 3, "configurePresets": [{"name": "only", "binaryDir": "b"}]})
    assert TaskEngine().info(cmake_plain_project)["binary_dir"] == str(cmake_plain_project / "b")


def test_info_with_unchosen_presets_has_no_binary_dir(cmake_presets_project):
    info = TaskEngine().info(cmake_presets_project)
    assert info["binary_dir"] is None
    assert info["targets"] is None


# ────────────────────────────────────────────────────────────────
# Malformed project files
# ────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_malformed_file_api_reply_is_not_fatal(cmake_plain_project, file_api_reply, mark_configured):
    binary_dir = mark_configured(cmake_plain_project / "build")
    reply = file_api_reply(binary_dir, [("app", "EXECUTABLE", "app")])
    (reply / "index-2024-01-01T00-00-00-0000.json").write_text('{"objects": [{"kind": "codemodel", "jsonFile": 7}]}')

    engine = TaskEngine()
    assert engine.info(cmake_plain_project)["targets"] is None

    sink = TerminalSink()
    assert await engine.run_task("run", start_dir=cmake_plain_project, sink=sink) is None
    assert sink.notices[0][0] == logging.WARNING


def test_malformed_inherits_still_resolves(cmake_plain_project, write_presets):
    write_presets(
        cmake_plain_project,
        {"version": 3, "configurePresets": [{"name": "dev", "inherits": 5, "binaryDir": "build/dev"}]},
    )
    resolved = TaskEngine().resolve_task("configure", start_dir=cmake_plain_project)
    assert resolved.argv[:3] == ("cmake", "--preset", "dev")
    assert resolved.binary_dir == str(cmake_plain_project / "build" / "dev")


@pytest.mark.asyncio
async def test_undecodable_project_config_becomes_notice(python_project):
    (python_project / PROJECT_CONFIG_FILE).write_bytes(b'[env]\nA = "\xff"\n')
    engine = TaskEngine()

    sink = TerminalSink()
    assert await engine.run_task("run", start_dir=python_project, sink=sink) is None
    assert "Invalid TOML" in sink.notices[0][1]
    assert engine.info(python_project)["backend"] == "python"
