# project_tasks/session.py
"""
Per-project-root memory of the user's last selections.

A SessionStore maps a canonical root path to a dict of string values. Keys are
not validated: preset, build_preset, build_target, target and test_preset are
the ones the resolver reads, anything else is stored verbatim.

By default the store lives only as long as the object (one host process).
Give it a ``path`` to persist the same data as JSON across restarts.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

SESSION_KEYS = ("preset", "build_preset", "build_target", "target", "test_preset")
"""Keys the resolver reads. The store accepts any key."""


def normalize_root(root: str | Path) -> str:
    """Canonical identity of a root: absolute, normalised separators, no trailing slash."""
    return os.path.normcase(os.path.normpath(os.path.abspath(os.fspath(root))))


class SessionStore:
    """
    Root-scoped key/value store for user selections.

    Last-writer-wins; it is only mutated from the host's single thread.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """
        Args:
            path: Optional JSON file to load from and save to. None keeps state in memory only.
        """
        self._path = Path(path) if path is not None else None
        self._data: dict[str, dict[str, str]] | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def _load(self) -> dict[str, dict[str, str]]:
        if self._data is not None:
            return self._data

        self._data = {}
        if self._path is None or not self._path.exists():
            return self._data

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self._path}: {e}")
            return self._data

        if not isinstance(raw, dict):
            logger.warning(f"Ignoring session file {self._path}: top level is not an object")
            return self._data

        for root, values in raw.items():
            if isinstance(values, dict):
                self._data[root] = {str(k): v for k, v in values.items() if isinstance(v, str)}
        logger.debug(f"Loaded session data for {len(self._data)} roots from {self._path}")
        return self._data

    def _save(self) -> None:
        if self._path is None or self._data is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            # The in-memory state stays authoritative for this process
            logger.warning(f"Failed to save session file {self._path}: {e}")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def get(self, root: str | Path, key: str) -> str | None:
        """Value stored for ``key`` under ``root``, or None."""
        project = self._load().get(normalize_root(root))
        if project is None:
            return None
        return project.get(key)

    def set(self, root: str | Path, key: str, value: str) -> None:
        """Store ``value`` for ``key`` under ``root``. Creates the root's entry lazily."""
        data = self._load()
        data.setdefault(normalize_root(root), {})[key] = value
        logger.debug(f"Session set {key}={value!r} for {normalize_root(root)}")
        self._save()

    def unset(self, root: str | Path, key: str) -> None:
        """Forget one key for ``root`` (no-op if absent)."""
        project = self._load().get(normalize_root(root))
        if project is not None and key in project:
            del project[key]
            self._save()

    def clear(self, root: str | Path) -> None:
        """Forget everything stored for ``root``."""
        if self._load().pop(normalize_root(root), None) is not None:
            self._save()

    def snapshot(self, root: str | Path) -> dict[str, str]:
        """Copy of all values stored for ``root``."""
        return dict(self._load().get(normalize_root(root), {}))

    @property
    def roots(self) -> list[str]:
        return sorted(self._load())

    def __repr__(self) -> str:
        return f"SessionStore(path={self._path}, roots={len(self._load())})"
