from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # <3.11

from .exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = ".project-tasks.toml"


# ─────────────────────────────────────────────────────────────────────────────
# Config dataclasses
# ─────────────────────────────────────────────────────────────────────────────
def _check_str_map(value: Any, where: str) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{where}] must be a table of strings")
    for k, v in value.items():
        if not isinstance(v, str):
            raise ConfigValidationError(f"[{where}] value for '{k}' must be a string, got {type(v).__name__}")
    return dict(value)


@dataclass(frozen=True)
class TargetConfig:
    """
    An explicitly declared run/debug target.

    Used for backends without File API discovery, or to add targets CMake does
    not report.
    """

    name: str
    path: str
    """Executable path. Relative paths are resolved from the project root."""

    args: list[str] = field(default_factory=list)
    """Arguments always passed to the executable (before caller args)."""

    env: dict[str, str] = field(default_factory=dict)
    """Environment overlay for this target."""

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigValidationError("Target name cannot be empty")
        if not isinstance(self.path, str) or not self.path.strip():
            logger.warning(f"Invalid config for target '{self.name}': path cannot be empty")
            raise ConfigValidationError(f"Target '{self.name}' must have a non-empty path")
        if not isinstance(self.args, list) or not all(isinstance(a, str) for a in self.args):
            raise ConfigValidationError(f"Target '{self.name}': args must be a list of strings")
        _check_str_map(self.env, f"targets.{self.name}.env")


@dataclass(frozen=True)
class ProjectConfig:
    """
    Project-local settings read from .project-tasks.toml.

    Every section is optional; ProjectConfig() is the "no file" default.
    """

    variables: dict[str, str] = field(default_factory=dict)
    """Overrides for backend template variables (build_dir, entry_point, ...)."""

    env: dict[str, str] = field(default_factory=dict)
    """Environment overlay for every task in this project."""

    targets: dict[str, TargetConfig] = field(default_factory=dict)
    """Explicit run/debug targets by name."""

    cancel_grace_period: float | None = None
    """Seconds between SIGTERM and SIGKILL on cancel (None = runner default)."""

    source: str | None = None
    """Path the config was loaded from, for messages."""

    def __post_init__(self) -> None:
        _check_str_map(self.variables, "variables")
        _check_str_map(self.env, "env")
        if self.cancel_grace_period is not None and self.cancel_grace_period < 0:
            logger.warning("Invalid config: cancel_grace_period cannot be negative")
            raise ConfigValidationError("runner.cancel_grace_period cannot be negative")


# =====================================================================
#   Main loader
# =====================================================================
def load_config(path: str | Path | BinaryIO) -> ProjectConfig:
    """
    Load and validate a .project-tasks.toml file into a ProjectConfig.

    Raises:
        ConfigValidationError: If the TOML is invalid or a section has the wrong shape
    """
    config_path: Path | None = None
    try:
        if not hasattr(path, "read"):
            config_path = Path(path).resolve()
            with open(config_path, "rb") as f:
                data = tomli.load(f)
        else:
            data = tomli.load(path)  # type: ignore
    except (tomli.TOMLDecodeError, UnicodeDecodeError) as e:
        where = f" in {config_path}" if config_path else ""
        raise ConfigValidationError(f"Invalid TOML{where}: {e}") from None
    except OSError as e:
        raise ConfigValidationError(f"Could not read project config {config_path or path}: {e}") from None

    unknown = set(data) - {"variables", "env", "targets", "runner"}
    if unknown:
        logger.warning(f"Ignoring unknown sections in project config: {sorted(unknown)}")

    variables = _check_str_map(data.get("variables", {}), "variables")
    env = _check_str_map(data.get("env", {}), "env")

    # ────── Parse [targets.<name>] tables ──────
    targets_data = data.get("targets", {})
    if not isinstance(targets_data, dict):
        raise ConfigValidationError("[targets] must be a table of tables")

    targets: dict[str, TargetConfig] = {}
    for name, target_dict in targets_data.items():
        if not isinstance(target_dict, dict):
            raise ConfigValidationError(f"[targets.{name}] must be a table")
        try:
            targets[name] = TargetConfig(name=name, **target_dict)
        except TypeError as e:
            raise ConfigValidationError(f"Invalid config in [targets.{name}]: {e}") from None

    # ────── Parse [runner] section ──────
    runner = data.get("runner", {})
    if not isinstance(runner, dict):
        raise ConfigValidationError("[runner] must be a table")
    grace = runner.get("cancel_grace_period")
    if grace is not None and (isinstance(grace, bool) or not isinstance(grace, (int, float))):
        raise ConfigValidationError("runner.cancel_grace_period must be a number")

    logger.debug(
        f"Loaded project config ({len(variables)} variables, {len(env)} env, {len(targets)} targets)"
    )
    return ProjectConfig(
        variables=variables,
        env=env,
        targets=targets,
        cancel_grace_period=float(grace) if grace is not None else None,
        source=str(config_path) if config_path else None,
    )


def load_project_config(root: str | Path) -> ProjectConfig:
    """Load ``<root>/.project-tasks.toml``, or return an empty ProjectConfig if there is none."""
    config_path = Path(root) / PROJECT_CONFIG_FILE
    if not config_path.is_file():
        return ProjectConfig()
    return load_config(config_path)
