from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

TASK_NAMES = ("configure", "build", "run", "debug", "test", "clean", "package", "cancel")
"""Canonical task names, in display order. 'cancel' is handled by the engine, never templated."""


# ─────────────────────────────────────────────────────────────────────────────
# Name validation
# ─────────────────────────────────────────────────────────────────────────────
def validate_name(name: str, what: str) -> str:
    """
    Validate a backend or task name.

    Allowed characters: alphanumerics, underscores and hyphens.

    Raises:
        ConfigValidationError: If name is empty or contains invalid characters
    """
    if not name:
        raise ConfigValidationError(f"{what} name cannot be empty")
    if not re.match(r"^[\w\-]+$", name):
        raise ConfigValidationError(
            f"Invalid {what} name '{name}': must contain only alphanumerics, underscores, and hyphens"
        )
    return name


@dataclass(frozen=True)
class TaskTemplate:
    """
    Immutable command template for one task of one backend.

    ``cmd`` is the preset-based (or only) invocation; ``fallback_cmd`` is used when
    the needed preset is not available. Both are argv lists that may contain
    ``${var}`` placeholders, expanded by the resolver.
    """

    cmd: tuple[str, ...]
    """Primary argv template."""

    fallback_cmd: tuple[str, ...] | None = None
    """Argv template used when no preset applies (None = no fallback)."""

    needs_preset: bool = False
    """Task selects a configure preset (configure, clean)."""

    needs_build_preset: bool = False
    """Task selects a build preset when the project defines any (build, package)."""

    needs_test_preset: bool = False
    """Task selects a test preset when the project defines any (test)."""

    needs_target: bool = False
    """Task runs a discovered executable target (run, debug)."""

    supports_build_target: bool = False
    """Task honours the session's build_target (appended as --target)."""

    args_passthrough: bool = False
    """Caller-supplied args are appended to the argv."""

    env: Mapping[str, str] = field(default_factory=dict)
    """Task-specific environment overlay."""

    debug_adapter: Mapping[str, Any] | None = None
    """Launch configuration a debugger-capable host may use instead of running argv."""

    def __post_init__(self) -> None:
        if not self.cmd:
            logger.warning("Invalid task template: cmd cannot be empty")
            raise ConfigValidationError("Task template cmd cannot be empty")
        if self.fallback_cmd is not None and not self.fallback_cmd:
            raise ConfigValidationError("Task template fallback_cmd cannot be empty when given")
        # Lists become tuples; templates are shared between engines
        object.__setattr__(self, "cmd", tuple(self.cmd))
        if self.fallback_cmd is not None:
            object.__setattr__(self, "fallback_cmd", tuple(self.fallback_cmd))

    @property
    def is_preset_capable(self) -> bool:
        return self.needs_preset or self.needs_build_preset or self.needs_test_preset


@dataclass(frozen=True)
class Backend:
    """
    Immutable definition of a project type: detection markers plus task templates.

    Backends form a closed set registered once in a BackendRegistry; new project
    types are added by registering another Backend, not by probing fields.
    """

    name: str
    """Unique id ("cmake", "python")."""

    markers: tuple[str, ...]
    """Marker files whose presence in a directory identifies this backend.
    Configuration formats come before bare source heuristics."""

    tasks: Mapping[str, TaskTemplate]
    """Task name -> template. Missing names are unsupported tasks."""

    variables: Mapping[str, str] = field(default_factory=dict)
    """Default template variables (overridable from .project-tasks.toml)."""

    env: Mapping[str, str] = field(default_factory=dict)
    """Environment overlay for every task of this backend."""

    preset_aware: bool = False
    """True when the backend reads CMake presets and the File API."""

    def __post_init__(self) -> None:
        validate_name(self.name, "Backend")
        if not self.markers:
            logger.warning(f"Invalid backend '{self.name}': markers cannot be empty")
            raise ConfigValidationError(f"Backend '{self.name}' needs at least one marker file")
        for task_name in self.tasks:
            validate_name(task_name, "Task")
            if task_name == "cancel":
                raise ConfigValidationError("'cancel' is handled by the engine and cannot be templated")
        object.__setattr__(self, "markers", tuple(self.markers))

    def detect(self, root: str | Path) -> bool:
        """True if any marker file exists directly in ``root``."""
        root = Path(root)
        return any((root / marker).exists() for marker in self.markers)

    def get_task(self, task_name: str) -> TaskTemplate | None:
        return self.tasks.get(task_name)

    @property
    def task_names(self) -> list[str]:
        """Supported tasks in canonical order, followed by any extra task names."""
        known = [t for t in TASK_NAMES if t in self.tasks]
        extra = sorted(t for t in self.tasks if t not in TASK_NAMES)
        return known + extra
