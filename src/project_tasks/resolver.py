# project_tasks/resolver.py
"""
Turns (backend, task name, session selections, presets) into a concrete command.

Resolution is synchronous and reads the filesystem (presets, File API) fresh
on every call. Each call makes exactly one decision between a preset-based
invocation and a fallback one (see Invocation); nothing else in the package
builds command lines.

Selection rules, per session key:

- an explicit ``selections`` value for the key always wins (the host passes
  it after answering a NeedsSelectionError);
- with ``prompt=True`` the task's own keys (``ResolvedCommand.prompt_keys``)
  ignore the stored session value and raise NeedsSelectionError;
- otherwise a stored session value is used if it is still valid;
- otherwise a single candidate is used without asking;
- otherwise NeedsSelectionError.
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from . import file_api
from . import presets as presets_mod
from .backend import Backend, TaskTemplate
from .exceptions import (
    NeedsSelectionError,
    NotConfiguredError,
    PresetCycleError,
    TargetNotFoundError,
    UnsupportedTaskError,
)
from .load_config import ProjectConfig
from .presets import Preset
from .session import SessionStore
from .templates import expand_cmd

logger = logging.getLogger(__name__)


class Invocation(Enum):
    """Which branch of a task template produced the command."""

    PRESET = "preset"
    """Preset-based invocation (cmake --preset, ctest --preset, ...)."""
    FALLBACK = "fallback"
    """Fallback invocation with an explicit build directory."""
    DIRECT = "direct"
    """Template without preset branches (run targets, uv commands)."""


@dataclass(frozen=True)
class ResolvedCommand:
    """
    A fully substituted command, ready for the job runner.

    ``env`` is an overlay only; the runner merges it over os.environ.
    """

    argv: tuple[str, ...]
    cwd: str
    task_name: str
    backend_name: str
    invocation: Invocation
    env: Mapping[str, str] = field(default_factory=dict)
    binary_dir: str | None = None
    """Build directory the command works on, when there is one."""
    prompt_keys: tuple[str, ...] = ()
    """Session keys that prompt=True re-selects for this task."""
    debug_adapter: Mapping[str, Any] | None = None
    """Debugger launch config for hosts that can use it (program/args/cwd filled in)."""
    variables: Mapping[str, str] = field(default_factory=dict)
    """Template variables used for expansion."""
    selections: Mapping[str, str] = field(default_factory=dict)
    """Explicit selections that were valid for this task."""

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def command_line(self) -> str:
        """Shell-quoted argv, for display."""
        return shlex.join(self.argv)

    def __repr__(self) -> str:
        return (
            f"ResolvedCommand(task={self.task_name!r}, backend={self.backend_name!r}, "
            f"invocation={self.invocation.value}, argv={list(self.argv)!r})"
        )


def prompt_keys_for(template: TaskTemplate) -> tuple[str, ...]:
    """The session keys a task re-selects when run with prompt=True."""
    keys: list[str] = []
    if template.needs_preset:
        keys.append("preset")
    if template.needs_build_preset:
        keys.append("build_preset")
        if template.supports_build_target:
            keys.append("build_target")
    if template.needs_test_preset:
        keys.append("test_preset")
    if template.needs_target:
        keys.append("target")
    return tuple(keys)


def fallback_binary_dir(root: Path, variables: Mapping[str, str]) -> str:
    """Build directory used without a configure preset: ``build_dir`` (default 'build') under ``root``."""
    build_dir = Path(variables.get("build_dir") or "build")
    if not build_dir.is_absolute():
        build_dir = root / build_dir
    return os.path.normpath(build_dir)


@dataclass
class _Context:
    root: Path
    task_name: str
    forced: frozenset[str]
    selections: Mapping[str, str]
    variables: dict[str, str]
    env: dict[str, str]
    prefix_args: list[str] = field(default_factory=list)
    accepted: dict[str, str] = field(default_factory=dict)


class TaskResolver:
    """
    Resolves task requests against a SessionStore.

    Stateless apart from the session it reads; one instance can serve every
    root.
    """

    def __init__(self, session: SessionStore) -> None:
        self._session = session

    # ------------------------------------------------------------------ #
    # Selection helpers
    # ------------------------------------------------------------------ #
    def _chosen(self, ctx: _Context, key: str) -> str | None:
        if key in ctx.selections:
            return ctx.selections[key]
        if key in ctx.forced:
            return None
        return self._session.get(ctx.root, key)

    def _pick_preset(
        self,
        ctx: _Context,
        key: str,
        valid: Sequence[Preset],
        candidates: Sequence[Preset],
    ) -> Preset:
        chosen = presets_mod.find_preset(valid, self._chosen(ctx, key))
        if chosen is not None:
            if key in ctx.selections:
                ctx.accepted[key] = chosen.name
            return chosen
        if key not in ctx.forced and key not in ctx.selections and len(candidates) == 1:
            logger.debug(f"Using only {key} candidate '{candidates[0].name}'")
            return candidates[0]
        raise NeedsSelectionError(key, [p.name for p in candidates], ctx.task_name)

    def _configure_preset(self, ctx: _Context, presets: Sequence[Preset] | None) -> Preset | None:
        """Selected configure preset, or None when the project has no presets (fallback)."""
        if not presets:
            return None
        return self._pick_preset(ctx, "preset", presets, presets)

    def _binary_dir(self, ctx: _Context, configure: Preset | None) -> str:
        if configure is not None and configure.binary_dir:
            return configure.binary_dir
        return fallback_binary_dir(ctx.root, ctx.variables)

    @staticmethod
    def _load_kind(root: Path, kind: str) -> list[Preset]:
        try:
            return presets_mod.load_presets(root, kind) or []  # type: ignore[arg-type]
        except PresetCycleError as e:
            logger.warning(f"Ignoring {kind} presets in {root}: {e}")
            return []

    # ------------------------------------------------------------------ #
    # Per-task steps (each returns the template branch to expand)
    # ------------------------------------------------------------------ #
    def _resolve_configure(
        self, ctx: _Context, template: TaskTemplate, presets: Sequence[Preset] | None
    ) -> tuple[Sequence[str], Invocation]:
        configure = self._configure_preset(ctx, presets)
        ctx.variables["binary_dir"] = self._binary_dir(ctx, configure)
        if configure is not None:
            ctx.variables["preset"] = configure.name
            return template.cmd, Invocation.PRESET
        return template.fallback_cmd or template.cmd, Invocation.FALLBACK

    def _resolve_build(
        self, ctx: _Context, template: TaskTemplate, presets: Sequence[Preset] | None
    ) -> tuple[Sequence[str], Invocation]:
        configure = self._configure_preset(ctx, presets)
        binary_dir = self._binary_dir(ctx, configure)
        ctx.variables["binary_dir"] = binary_dir

        build_presets = self._load_kind(ctx.root, "build") if presets is not None else []
        if build_presets:
            bound = [p for p in build_presets if configure is not None and p.configure_preset == configure.name]
            chosen = self._pick_preset(ctx, "build_preset", build_presets, bound or build_presets)
            ctx.variables["build_preset"] = chosen.name
            cmd, invocation = template.cmd, Invocation.PRESET
        else:
            # Configure presets only (or none at all): build the binary dir directly
            if not file_api.is_configured(ctx.root, binary_dir):
                raise NotConfiguredError(binary_dir)
            cmd, invocation = template.fallback_cmd or template.cmd, Invocation.FALLBACK

        if template.supports_build_target:
            build_target = self._chosen(ctx, "build_target")
            if "build_target" in ctx.selections:
                ctx.accepted["build_target"] = ctx.selections["build_target"]
            if build_target is None and "build_target" in ctx.forced:
                targets = file_api.get_targets(ctx.root, binary_dir) or []
                raise NeedsSelectionError("build_target", ["", *(t.name for t in targets)], ctx.task_name)
            if build_target:
                ctx.variables["target_flag"] = "--target"
                ctx.variables["target_name"] = build_target

        return cmd, invocation

    def _resolve_test(
        self, ctx: _Context, template: TaskTemplate, presets: Sequence[Preset] | None
    ) -> tuple[Sequence[str], Invocation]:
        configure = self._configure_preset(ctx, presets)
        ctx.variables["binary_dir"] = self._binary_dir(ctx, configure)

        test_presets = self._load_kind(ctx.root, "test") if presets is not None else []
        if test_presets:
            bound = [p for p in test_presets if configure is not None and p.configure_preset == configure.name]
            explicit = presets_mod.find_preset(test_presets, self._chosen(ctx, "test_preset"))
            if explicit is not None or bound or "test_preset" in ctx.forced:
                chosen = self._pick_preset(ctx, "test_preset", test_presets, bound or test_presets)
                ctx.variables["test_preset"] = chosen.name
                return template.cmd, Invocation.PRESET

        return template.fallback_cmd or template.cmd, Invocation.FALLBACK

    def _resolve_target(
        self,
        ctx: _Context,
        backend: Backend,
        presets: Sequence[Preset] | None,
        project: ProjectConfig,
    ) -> tuple[str, str]:
        """Pick the run/debug target. Returns (name, absolute path)."""
        candidates: dict[str, tuple[str | None, list[str], dict[str, str]]] = {}
        discovered = None

        if backend.preset_aware:
            configure = self._configure_preset(ctx, presets)
            binary_dir = self._binary_dir(ctx, configure)
            ctx.variables["binary_dir"] = binary_dir
            discovered = file_api.get_executables(ctx.root, binary_dir)
            for target in discovered or []:
                candidates[target.name] = (target.path, [], {})

        for name, declared in project.targets.items():
            path = Path(declared.path)
            if not path.is_absolute():
                path = ctx.root / path
            candidates[name] = (os.path.normpath(path), list(declared.args), dict(declared.env))

        if not candidates:
            raise TargetNotFoundError(None)

        names = sorted(candidates)
        name = self._chosen(ctx, "target")
        if name is None:
            if "target" not in ctx.forced and len(names) == 1:
                name = names[0]
            else:
                raise NeedsSelectionError("target", names, ctx.task_name)
        if name not in candidates or candidates[name][0] is None:
            raise TargetNotFoundError(name, names)
        if "target" in ctx.selections:
            ctx.accepted["target"] = name

        path, target_args, target_env = candidates[name]
        ctx.prefix_args.extend(target_args)
        ctx.env.update(target_env)
        return name, path  # type: ignore[return-value]

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #
    def resolve(
        self,
        root: str | Path,
        backend_name: str,
        backend: Backend,
        task_name: str,
        presets: Sequence[Preset] | None,
        *,
        prompt: bool = False,
        selections: Mapping[str, str] | None = None,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        project: ProjectConfig | None = None,
    ) -> ResolvedCommand:
        """
        Resolve ``task_name`` for ``backend`` at ``root``.

        Args:
            presets: Visible configure presets (presets.load(root)); None means
                the project has no presets file and fallback commands apply
            prompt: Re-select this task's own session keys instead of reusing them
            selections: Explicit values for this call (they override the session)
            args: Extra arguments for tasks that pass them through
            env: Caller environment overlay (highest precedence)
            project: Project config (.project-tasks.toml); default is empty

        Raises:
            UnsupportedTaskError, NeedsSelectionError, TargetNotFoundError, NotConfiguredError
        """
        template = backend.get_task(task_name)
        if template is None:
            raise UnsupportedTaskError(task_name, backend_name)

        project = project or ProjectConfig()
        prompt_keys = prompt_keys_for(template)
        ctx = _Context(
            root=Path(root).absolute(),
            task_name=task_name,
            forced=frozenset(prompt_keys) if prompt else frozenset(),
            selections=dict(selections or {}),
            variables={**backend.variables, **project.variables},
            env={**backend.env, **project.env, **template.env},
        )
        if not backend.preset_aware:
            presets = None

        try:
            if template.needs_target:
                name, path = self._resolve_target(ctx, backend, presets, project)
                ctx.variables["target"] = name
                ctx.variables["target_path"] = path
                cmd, invocation = template.cmd, Invocation.DIRECT
            elif template.needs_build_preset:
                cmd, invocation = self._resolve_build(ctx, template, presets)
            elif template.needs_test_preset:
                cmd, invocation = self._resolve_test(ctx, template, presets)
            elif template.needs_preset:
                cmd, invocation = self._resolve_configure(ctx, template, presets)
            else:
                cmd, invocation = template.cmd, Invocation.DIRECT
        except NeedsSelectionError as e:
            # Let the host keep the choices made before this one
            e.accepted = dict(ctx.accepted)
            raise

        argv = expand_cmd(cmd, ctx.variables)
        if template.args_passthrough:
            argv.extend(ctx.prefix_args)
            argv.extend(args)
        elif args:
            logger.debug(f"Task '{task_name}' does not take extra args; ignoring {list(args)}")

        if not argv:
            raise UnsupportedTaskError(task_name, backend_name)

        if env:
            ctx.env.update(env)

        debug_adapter = None
        if template.debug_adapter is not None:
            debug_adapter = {
                **template.debug_adapter,
                "program": ctx.variables.get("target_path") or argv[0],
                "cwd": str(ctx.root),
                "args": argv[1:],
                "env": dict(ctx.env),
            }

        resolved = ResolvedCommand(
            argv=tuple(argv),
            cwd=str(ctx.root),
            task_name=task_name,
            backend_name=backend_name,
            invocation=invocation,
            env=dict(ctx.env),
            binary_dir=ctx.variables.get("binary_dir"),
            prompt_keys=prompt_keys,
            debug_adapter=debug_adapter,
            variables=dict(ctx.variables),
            selections=dict(ctx.accepted),
        )
        logger.debug(f"Resolved {resolved!r}")
        return resolved


def resolve(
    root: str | Path,
    backend_name: str,
    backend: Backend,
    task_name: str,
    session: SessionStore,
    presets: Sequence[Preset] | None,
    **kwargs: Any,
) -> ResolvedCommand:
    """Functional form of TaskResolver(session).resolve(...)."""
    return TaskResolver(session).resolve(root, backend_name, backend, task_name, presets, **kwargs)
