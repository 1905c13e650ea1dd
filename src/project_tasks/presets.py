# project_tasks/presets.py
"""
CMake Presets parsing.

Reads CMakePresets.json and CMakeUserPresets.json (plus their ``include``
chains), resolves ``inherits`` and expands the macros that matter for
locating the build directory.

Everything here is re-read from disk on each call: presets can change
between two task runs and nothing is cached.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import platform
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from .exceptions import PresetCycleError

logger = logging.getLogger(__name__)

PresetKind = Literal["configure", "build", "test"]

PRESET_FILES = ("CMakePresets.json", "CMakeUserPresets.json")

_KIND_KEYS: dict[str, str] = {
    "configure": "configurePresets",
    "build": "buildPresets",
    "test": "testPresets",
}

DEFAULT_BINARY_DIR = "build/${presetName}"
"""Used when no preset in the inheritance chain defines binaryDir, to avoid in-source builds."""

_MACRO_RE = re.compile(r"\$(env|penv)?\{([^}]+)\}")


@dataclass(frozen=True)
class Preset:
    """
    One resolved (inheritance-merged, macro-expanded) preset.

    Hidden presets are never returned by the loader; they only exist as bases
    for inheritance.
    """

    name: str
    kind: str
    hidden: bool = False
    inherits: tuple[str, ...] = ()
    binary_dir: str | None = None
    """Absolute build directory (configure presets only)."""
    configure_preset: str | None = None
    """Configure preset a build/test preset is bound to."""
    display_name: str | None = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    """Full merged JSON object, for fields this package does not interpret."""

    @property
    def label(self) -> str:
        """Display text for pickers: 'name - displayName' when a display name exists."""
        return f"{self.name} - {self.display_name}" if self.display_name else self.name


# =====================================================================
#   File reading
# =====================================================================
def read_presets_file(path: str | Path) -> dict[str, Any] | None:
    """
    Parse one presets file.

    Returns:
        The JSON object, or None if the file is missing, unreadable or malformed
    """
    path = Path(path)
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to parse presets file {path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Ignoring presets file {path}: top level is not an object")
        return None
    return data


def _read_with_includes(path: Path, seen: set[str], out: list[dict[str, Any]]) -> bool:
    """
    Read ``path`` and, depth-first, everything it includes.

    Included files are appended before the including file so the including
    file's presets override them. Each file is read at most once.
    """
    key = os.path.normcase(os.path.normpath(os.path.abspath(path)))
    if key in seen:
        return True
    seen.add(key)

    data = read_presets_file(path)
    if data is None:
        return False

    includes = data.get("include", [])
    if isinstance(includes, list):
        for inc in includes:
            if not isinstance(inc, str):
                logger.warning(f"Ignoring non-string include {inc!r} in {path}")
                continue
            inc_path = Path(inc)
            if not inc_path.is_absolute():
                inc_path = path.parent / inc_path
            if not _read_with_includes(inc_path, seen, out):
                logger.warning(f"Included presets file {inc_path} (from {path}) could not be read")

    out.append(data)
    return True


def load_files(root: str | Path) -> list[dict[str, Any]] | None:
    """
    All preset documents for ``root`` in override order (later wins).

    CMakeUserPresets.json implicitly includes CMakePresets.json, so the
    project file is read first and the user file last.

    Returns:
        None when neither top-level presets file could be read
    """
    root = Path(root)
    seen: set[str] = set()
    docs: list[dict[str, Any]] = []
    found = False
    for filename in PRESET_FILES:
        if _read_with_includes(root / filename, seen, docs):
            found = True
    return docs if found else None


# =====================================================================
#   Inheritance & macros
# =====================================================================
def _deep_merge(winner: Mapping[str, Any], base: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge two JSON objects; values in ``winner`` take precedence."""
    merged = copy.deepcopy(dict(base))
    for key, value in winner.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _parent_names(preset: Mapping[str, Any]) -> list[str]:
    """Names listed under ``inherits``; anything but a string or list of strings counts as none."""
    inherits = preset.get("inherits")
    if isinstance(inherits, str):
        return [inherits]
    if isinstance(inherits, list):
        return [p for p in inherits if isinstance(p, str)]
    return []


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def resolve_inheritance(
    preset: Mapping[str, Any],
    all_presets: Mapping[str, Mapping[str, Any]],
    _stack: tuple[str, ...] = (),
) -> dict[str, Any]:
    """
    Merge a preset with its ancestors.

    The child's own fields win over any parent; among several parents the
    earlier one wins. ``hidden`` is never inherited.

    Raises:
        PresetCycleError: If the inheritance chain loops back on itself
    """
    name = preset.get("name")
    if name in _stack:
        raise PresetCycleError([*_stack, name])
    stack = (*_stack, name)

    inherits = preset.get("inherits")
    if inherits is not None and not isinstance(inherits, (str, list)):
        logger.warning(f"Preset '{name}' has malformed 'inherits' {inherits!r}; ignoring it")

    inherited: dict[str, Any] = {}
    for parent_name in _parent_names(preset):
        parent = all_presets.get(parent_name)
        if parent is None:
            logger.warning(f"Preset '{name}' inherits unknown preset '{parent_name}'")
            continue
        resolved_parent = resolve_inheritance(parent, all_presets, stack)
        resolved_parent.pop("hidden", None)
        inherited = _deep_merge(inherited, resolved_parent)

    return _deep_merge(preset, inherited)


def expand_macros(value: str, variables: Mapping[str, str], environ: Mapping[str, str] | None = None) -> str:
    """
    Expand CMake preset macros.

    ``${name}`` comes from ``variables`` and is left untouched when unknown;
    ``$env{NAME}`` / ``$penv{NAME}`` come from ``environ`` (default os.environ)
    and expand to an empty string when unset.
    """
    env = os.environ if environ is None else environ

    def _sub(match: re.Match[str]) -> str:
        namespace, macro = match.group(1), match.group(2)
        if namespace:
            return env.get(macro, "")
        return variables.get(macro, match.group(0))

    return _MACRO_RE.sub(_sub, value)


def macro_variables(root: str | Path, preset: Mapping[str, Any]) -> dict[str, str]:
    """The ${...} macro values CMake defines for ``preset`` in ``root``."""
    root = Path(root).absolute()
    return {
        "sourceDir": str(root),
        "sourceParentDir": str(root.parent),
        "sourceDirName": root.name,
        "presetName": str(preset.get("name", "")),
        "generator": str(preset.get("generator", "")),
        "hostSystemName": platform.system(),
        "dollar": "$",
        "pathListSep": os.pathsep,
    }


def _binary_dir(root: Path, resolved: Mapping[str, Any]) -> str:
    raw = resolved.get("binaryDir") or DEFAULT_BINARY_DIR
    expanded = expand_macros(str(raw), macro_variables(root, resolved))
    path = Path(expanded)
    if not path.is_absolute():
        path = root / path
    return os.path.normpath(path)


def _to_preset(root: Path, kind: str, resolved: dict[str, Any]) -> Preset:
    return Preset(
        name=resolved["name"],
        kind=kind,
        hidden=bool(resolved.get("hidden", False)),
        inherits=tuple(_parent_names(resolved)),
        binary_dir=_binary_dir(root, resolved) if kind == "configure" else None,
        configure_preset=_optional_str(resolved.get("configurePreset")) if kind != "configure" else None,
        display_name=_optional_str(resolved.get("displayName")),
        fields=resolved,
    )


# =====================================================================
#   Public loaders
# =====================================================================
def _collect(docs: Iterable[Mapping[str, Any]], kind: str) -> dict[str, dict[str, Any]]:
    presets: dict[str, dict[str, Any]] = {}
    key = _KIND_KEYS[kind]
    for doc in docs:
        entries = doc.get(key, [])
        if not isinstance(entries, list):
            logger.warning(f"Ignoring '{key}': expected a list")
            continue
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                logger.warning(f"Ignoring {kind} preset without a name: {entry!r}")
                continue
            presets[entry["name"]] = entry
    return presets


def load_presets(root: str | Path, kind: PresetKind = "configure") -> list[Preset] | None:
    """
    Visible presets of ``kind`` for ``root``, sorted by name.

    Returns:
        None if the project has no presets file at all (callers use fallback
        commands); an empty list if it has one but no visible presets of ``kind``

    Raises:
        PresetCycleError: If a visible preset's inheritance is circular
    """
    if kind not in _KIND_KEYS:
        raise ValueError(f"Unknown preset kind '{kind}'")

    root = Path(root).absolute()
    docs = load_files(root)
    if docs is None:
        return None

    raw = _collect(docs, kind)
    presets = [
        _to_preset(root, kind, resolve_inheritance(entry, raw))
        for entry in raw.values()
        if not entry.get("hidden", False)
    ]
    presets.sort(key=lambda p: p.name)
    logger.debug(f"Loaded {len(presets)} visible {kind} presets from {root}")
    return presets


def load(root: str | Path) -> list[Preset] | None:
    """Visible configure presets for ``root``, or None when the project has no presets file."""
    return load_presets(root, "configure")


def get_build_presets(root: str | Path, configure_preset: str | None = None) -> list[Preset]:
    """Visible build presets, optionally only those bound to ``configure_preset``."""
    presets = load_presets(root, "build") or []
    if configure_preset is None:
        return presets
    return [p for p in presets if p.configure_preset == configure_preset]


def get_test_presets(root: str | Path, configure_preset: str | None = None) -> list[Preset]:
    """Visible test presets, optionally only those bound to ``configure_preset``."""
    presets = load_presets(root, "test") or []
    if configure_preset is None:
        return presets
    return [p for p in presets if p.configure_preset == configure_preset]


def has_build_preset(root: str | Path) -> bool:
    return bool(get_build_presets(root))


def find_preset(presets: Iterable[Preset] | None, name: str | None) -> Preset | None:
    if not presets or name is None:
        return None
    for preset in presets:
        if preset.name == name:
            return preset
    return None
