# project_tasks/detect.py
"""
Project root detection and backend selection.

Both functions are read-only filesystem probes. "No project here" is an
expected outcome and is reported as None, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .backend import Backend
from .backends import BackendRegistry

logger = logging.getLogger(__name__)


def has_marker(root: str | Path, marker: str) -> bool:
    """Check if a specific marker exists directly in ``root``."""
    return (Path(root) / marker).exists()


def matches_markers(root: str | Path, markers: Iterable[str]) -> bool:
    """Check if any marker file exists in ``root``."""
    return any(has_marker(root, m) for m in markers)


def find_root(start_dir: str | Path, registry: BackendRegistry) -> Path | None:
    """
    Walk upward from ``start_dir`` to the nearest directory any backend detects.

    At each level every backend is tested in registry (priority) order. A file
    path starts the walk at its parent directory.

    Returns:
        Absolute project root, or None when no ancestor matches any backend
    """
    start = Path(start_dir).expanduser().absolute()
    if start.is_file():
        start = start.parent

    for directory in (start, *start.parents):
        for backend in registry:
            if backend.detect(directory):
                logger.debug(f"Found project root {directory} (backend '{backend.name}')")
                return directory

    logger.debug(f"No project root found above {start}")
    return None


def get_backend(root: str | Path, registry: BackendRegistry) -> tuple[str, Backend] | None:
    """
    Detect which backend applies at a known root, without walking.

    When several backends match, the first registered wins.
    """
    for backend in registry:
        if backend.detect(root):
            return backend.name, backend
    return None
