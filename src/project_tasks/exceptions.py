# project_tasks/exceptions.py
"""
Custom exception hierarchy for project_tasks.

All project_tasks-specific exceptions inherit from ProjectTasksError to enable
catch-all error handling while still providing specific exception types
for different error conditions.

"No project here" is not an exception: detection returns None for that.
Job outcomes (failed, cancelled) are job states, not exceptions.
"""

from __future__ import annotations

from collections.abc import Sequence


class ProjectTasksError(Exception):
    """
    Base exception for all project_tasks errors.

    Catch this to handle any project_tasks-specific error.
    """

    pass


class ConfigValidationError(ProjectTasksError):
    """
    Raised when a .project-tasks.toml file or a config dataclass fails validation.

    Example:
        >>> TargetConfig(name="app", path="")
        ConfigValidationError: Target 'app' must have a non-empty path
    """

    pass


# ─────────────────────────────────────────────────────────────────────────────
# Resolution errors
# ─────────────────────────────────────────────────────────────────────────────
class ResolutionError(ProjectTasksError):
    """Base class for everything that stops a task from becoming a command line."""

    pass


class UnsupportedTaskError(ResolutionError):
    """
    Raised when the detected backend has no template for the requested task.

    Attributes:
        task_name: The task that was requested
        backend_name: The backend that lacks it
    """

    def __init__(self, task_name: str, backend_name: str):
        self.task_name = task_name
        self.backend_name = backend_name
        super().__init__(f"Task '{task_name}' not available for {backend_name}")


class NeedsSelectionError(ResolutionError):
    """
    Raised when resolution cannot proceed without a user choice.

    This is a request for the host to prompt, not a failure. The host picks one
    of ``choices`` and runs the task again with ``selections={key: choice}``;
    the engine remembers the choice in the session.

    Attributes:
        key: Session key that needs a value ("preset", "build_preset", "target", ...)
        choices: Selectable values, in display order
        task_name: Task being resolved when the selection was needed
        accepted: Explicit selections already validated before this one was needed
    """

    def __init__(self, key: str, choices: Sequence[str], task_name: str | None = None):
        self.key = key
        self.choices = list(choices)
        self.task_name = task_name
        self.accepted: dict[str, str] = {}
        shown = ", ".join(repr(c) for c in self.choices) or "(none)"
        super().__init__(f"Select a value for '{key}': {shown}")


class TargetNotFoundError(ResolutionError):
    """
    Raised when a run/debug target is unavailable or not in the discovered targets.

    Attributes:
        target: Requested target name (None when no targets could be discovered at all)
        available: Names that were discovered
    """

    def __init__(self, target: str | None, available: Sequence[str] = ()):
        self.target = target
        self.available = list(available)
        if target is None:
            msg = "No targets found. Run configure first?"
        else:
            known = ", ".join(self.available) or "(none)"
            msg = f"Target '{target}' not found. Available: {known}"
        super().__init__(msg)


class NotConfiguredError(ResolutionError):
    """Raised when a fallback build needs a build directory that was never configured."""

    def __init__(self, binary_dir: str):
        self.binary_dir = binary_dir
        super().__init__(f"Build directory '{binary_dir}' not configured. Run configure first.")


# ─────────────────────────────────────────────────────────────────────────────
# Metadata errors
# ─────────────────────────────────────────────────────────────────────────────
class MalformedMetadataError(ProjectTasksError):
    """
    Raised when presets or File API data cannot be used.

    Most loaders degrade to None instead of raising; this is only raised where
    a silent fallback would hide a real mistake in the user's files.
    """

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message if path is None else f"{message} ({path})")


class PresetCycleError(MalformedMetadataError):
    """
    Raised when preset inheritance is circular.

    Attributes:
        chain: Preset names from the first visited preset to the repeated one
    """

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(f"Circular preset inheritance: {' -> '.join(self.chain)}")


# ─────────────────────────────────────────────────────────────────────────────
# Execution errors
# ─────────────────────────────────────────────────────────────────────────────
class ProcessSpawnError(ProjectTasksError):
    """
    Recorded on a job when its executable is missing or cannot be executed.

    The job runner does not raise this out of run(); it is stored as the
    job's error and the job is marked failed.
    """

    def __init__(self, argv: Sequence[str], cause: OSError):
        self.argv = list(argv)
        self.cause = cause
        program = self.argv[0] if self.argv else "<empty>"
        super().__init__(f"Failed to start '{program}': {cause}")
