# project_tasks/engine.py
"""
TaskEngine - the surface a host (editor plugin, CLI) talks to.

Owns one SessionStore and one JobRunner and ties detection, presets and
resolution together. Everything except job execution is synchronous.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from . import file_api
from . import presets as presets_mod
from .backend import Backend
from .backends import BackendRegistry, default_registry
from .detect import find_root, get_backend
from .exceptions import ConfigValidationError, NeedsSelectionError, PresetCycleError, ResolutionError
from .job import Job
from .job_handle import JobHandle
from .job_runner import JobRunner
from .load_config import ProjectConfig, load_project_config
from .output_sink import OutputSink, TerminalSink
from .presets import Preset
from .resolver import ResolvedCommand, TaskResolver, fallback_binary_dir
from .session import SessionStore

logger = logging.getLogger(__name__)

# Values the resolver settled on that are worth remembering for the next run
_REMEMBERED = ("preset", "build_preset", "test_preset", "target")


class TaskEngine:
    """
    Detect, resolve and run project tasks.

    Example:
        async with TaskEngine() as engine:
            handle = await engine.run_task("build", start_dir="src/")
            if handle:
                job = await handle.wait()
    """

    def __init__(
        self,
        registry: BackendRegistry | None = None,
        session: SessionStore | None = None,
        runner: JobRunner | None = None,
        *,
        sink_factory: Callable[[], OutputSink] = TerminalSink,
    ) -> None:
        """
        Args:
            registry: Backends in detection priority order (default: cmake, python)
            session: Selection store; a fresh in-memory one by default
            runner: Job runner; a fresh one by default
            sink_factory: Builds a sink when run_task() is called without one
        """
        self.registry = registry or default_registry()
        self.session = session or SessionStore()
        self.runner = runner or JobRunner()
        self._resolver = TaskResolver(self.session)
        self._sink_factory = sink_factory
        logger.debug(f"TaskEngine initialized ({self.registry!r})")

    async def __aenter__(self) -> TaskEngine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # ================================================================
    # Detection
    # ================================================================
    def find_root(self, start_dir: str | Path | None = None) -> Path | None:
        return find_root(start_dir if start_dir is not None else os.getcwd(), self.registry)

    def _detect(self, start_dir: str | Path | None) -> tuple[Path, str, Backend] | None:
        root = self.find_root(start_dir)
        if root is None:
            return None
        found = get_backend(root, self.registry)
        if found is None:
            return None
        return root, found[0], found[1]

    def get_detected_backend(self, start_dir: str | Path | None = None) -> str | None:
        """Name of the backend for the project containing ``start_dir``, or None."""
        detected = self._detect(start_dir)
        return detected[1] if detected else None

    def get_available_tasks(self, root: str | Path | None) -> list[str]:
        """Tasks the backend at ``root`` supports (plus 'cancel'); [] when nothing is detected there."""
        if root is None:
            return []
        found = get_backend(root, self.registry)
        if found is None:
            return []
        return [*found[1].task_names, "cancel"]

    def load_presets(self, root: str | Path, backend: Backend | None = None) -> list[Preset] | None:
        """
        Visible configure presets, or None for fallback mode.

        Circular inheritance is logged and treated like a missing presets file.
        """
        if backend is not None and not backend.preset_aware:
            return None
        try:
            return presets_mod.load(root)
        except PresetCycleError as e:
            logger.warning(f"Ignoring presets in {root}: {e}")
            return None

    # ================================================================
    # Session
    # ================================================================
    def select(self, root: str | Path, key: str, value: str) -> None:
        """Remember a user choice (e.g. after a NeedsSelectionError)."""
        self.session.set(root, key, value)

    def _remember(self, root: Path, selections: Mapping[str, str]) -> None:
        for key, value in selections.items():
            self.session.set(root, key, value)

    # ================================================================
    # Resolution
    # ================================================================
    def _prepare(
        self,
        task_name: str,
        start_dir: str | Path | None,
        prompt: bool,
        selections: Mapping[str, str] | None,
        args: Sequence[str] | None,
        env: Mapping[str, str] | None,
    ) -> tuple[ResolvedCommand, ProjectConfig] | None:
        detected = self._detect(start_dir)
        if detected is None:
            return None
        root, backend_name, backend = detected

        project = load_project_config(root)
        try:
            resolved = self._resolver.resolve(
                root,
                backend_name,
                backend,
                task_name,
                self.load_presets(root, backend),
                prompt=prompt,
                selections=selections,
                args=args or (),
                env=env,
                project=project,
            )
        except NeedsSelectionError as e:
            self._remember(root, e.accepted)
            raise

        # Only explicit choices that resolution accepted are remembered
        self._remember(root, resolved.selections)
        for key in _REMEMBERED:
            value = resolved.variables.get(key)
            if value and self.session.get(root, key) != value:
                self.session.set(root, key, value)
        return resolved, project

    def resolve_task(
        self,
        task_name: str,
        *,
        start_dir: str | Path | None = None,
        prompt: bool = False,
        selections: Mapping[str, str] | None = None,
        args: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ResolvedCommand | None:
        """
        Resolve a task without running it.

        Returns:
            None when no project is detected from ``start_dir``

        Raises:
            ResolutionError subclasses and ConfigValidationError
        """
        prepared = self._prepare(task_name, start_dir, prompt, selections, args, env)
        return prepared[0] if prepared else None

    # ================================================================
    # Execution
    # ================================================================
    async def run_task(
        self,
        task_name: str,
        *,
        start_dir: str | Path | None = None,
        prompt: bool = False,
        selections: Mapping[str, str] | None = None,
        args: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        sink: OutputSink | None = None,
    ) -> JobHandle | None:
        """
        Resolve and start a task. ``"cancel"`` cancels the active job instead.

        Problems that stop the task (no project, unsupported task, missing
        target, unconfigured build dir, invalid config) are sent to the sink
        as notices and None is returned.

        Raises:
            NeedsSelectionError: The host must ask the user and call again
                with ``selections={err.key: choice}``
        """
        if task_name == "cancel":
            await self.cancel()
            return None

        sink = sink if sink is not None else self._sink_factory()
        try:
            prepared = self._prepare(task_name, start_dir, prompt, selections, args, env)
        except NeedsSelectionError:
            raise
        except (ResolutionError, ConfigValidationError) as e:
            logger.info(f"Task '{task_name}' not started: {e}")
            sink.notify(str(e), logging.WARNING)
            return None

        if prepared is None:
            sink.notify("No project root found", logging.WARNING)
            return None
        resolved, project = prepared

        if task_name == "configure" and resolved.binary_dir:
            file_api.setup_query(resolved.binary_dir)

        if project.cancel_grace_period is not None:
            self.runner.cancel_grace_period = project.cancel_grace_period

        return await self.runner.run(resolved, sink)

    async def cancel(self) -> bool:
        """Cancel the active job. False (no-op) when nothing is running."""
        return await self.runner.cancel()

    def is_task_running(self) -> bool:
        return self.runner.is_running

    @property
    def last_job(self) -> Job | None:
        return self.runner.current_job

    async def shutdown(self) -> None:
        await self.runner.shutdown()

    # ================================================================
    # Introspection
    # ================================================================
    def info(self, start_dir: str | Path | None = None) -> dict[str, Any]:
        """Summary of the detected project: root, backend, tasks, selections, presets, targets."""
        detected = self._detect(start_dir)
        if detected is None:
            return {"root": None, "backend": None, "tasks": []}
        root, backend_name, backend = detected

        info: dict[str, Any] = {
            "root": str(root),
            "backend": backend_name,
            "tasks": self.get_available_tasks(root),
            "session": self.session.snapshot(root),
            "running": self.is_task_running(),
        }
        if backend.preset_aware:
            configure_presets = self.load_presets(root, backend)
            info["presets"] = None if configure_presets is None else [p.name for p in configure_presets]
            selected = presets_mod.find_preset(configure_presets, self.session.get(root, "preset"))
            if selected is None and configure_presets and len(configure_presets) == 1:
                selected = configure_presets[0]
            if selected is not None and selected.binary_dir:
                binary_dir = selected.binary_dir
            elif configure_presets:
                # Several presets and none chosen yet
                binary_dir = None
            else:
                project = self._project_config_or_default(root)
                binary_dir = fallback_binary_dir(root, {**backend.variables, **project.variables})
            info["binary_dir"] = binary_dir
            info["configured"] = file_api.is_configured(root, binary_dir)
            targets = file_api.get_targets(root, binary_dir)
            info["targets"] = None if targets is None else [t.name for t in targets]
        return info

    def _project_config_or_default(self, root: Path) -> ProjectConfig:
        try:
            return load_project_config(root)
        except ConfigValidationError as e:
            logger.warning(f"Ignoring project config in {root}: {e}")
            return ProjectConfig()

    def __repr__(self) -> str:
        return f"TaskEngine(backends={self.registry.names}, runner={self.runner!r})"
