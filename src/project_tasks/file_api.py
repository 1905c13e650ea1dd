# project_tasks/file_api.py
"""
CMake File API integration: seeding queries and reading target replies.

CMake writes a reply under ``<build>/.cmake/api/v1/reply`` during configure,
but only if a query was placed under ``<build>/.cmake/api/v1/query`` first.
The engine seeds the query before every configure job; this module then
reads whatever reply is on disk.

Reading fails soft: a missing, partial or malformed reply yields None, never
an exception, since CMake may be writing it while we read.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CLIENT_NAME = "client-project-tasks"
QUERY_KINDS = ("codemodel-v2", "cache-v2", "toolchains-v1")


@dataclass(frozen=True)
class Target:
    """A build target from the File API codemodel."""

    name: str
    type: str
    """CMake target type: EXECUTABLE, STATIC_LIBRARY, SHARED_LIBRARY, UTILITY, ..."""
    path: str | None = None
    """Absolute path of the first artifact, if the target produces one."""

    @property
    def is_executable(self) -> bool:
        return self.type == "EXECUTABLE"


def _api_dir(binary_dir: str | Path) -> Path:
    return Path(binary_dir) / ".cmake" / "api" / "v1"


def query_dir(binary_dir: str | Path) -> Path:
    return _api_dir(binary_dir) / "query" / CLIENT_NAME


def reply_dir(binary_dir: str | Path) -> Path:
    return _api_dir(binary_dir) / "reply"


def _anchor(root: str | Path, binary_dir: str | Path) -> Path:
    path = Path(binary_dir)
    if not path.is_absolute():
        path = Path(root) / path
    return path


def setup_query(binary_dir: str | Path) -> bool:
    """
    Create the File API query files so the next configure writes a reply.

    Returns:
        False if the query directory could not be created (e.g. read-only path)
    """
    qdir = query_dir(binary_dir)
    try:
        qdir.mkdir(parents=True, exist_ok=True)
        for kind in QUERY_KINDS:
            (qdir / kind).touch(exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not seed CMake File API query in {qdir}: {e}")
        return False
    logger.debug(f"Seeded CMake File API query in {qdir}")
    return True


def is_configured(root: str | Path, binary_dir: str | Path | None) -> bool:
    """True if ``binary_dir`` (relative to ``root`` if not absolute) holds a CMakeCache.txt."""
    if not binary_dir:
        return False
    return (_anchor(root, binary_dir) / "CMakeCache.txt").is_file()


def find_reply_index(reply: str | Path) -> Path | None:
    """The lexicographically latest ``index-*.json`` in ``reply``, or None."""
    reply = Path(reply)
    try:
        names = [
            entry.name
            for entry in os.scandir(reply)
            if entry.name.startswith("index-") and entry.name.endswith(".json")
        ]
    except OSError:
        return None
    if not names:
        return None
    return reply / max(names)


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read File API object {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def parse_target(path: Path, build_dir: Path) -> Target | None:
    """Read one target object; None if it is unreadable or nameless."""
    data = _read_json(path)
    if data is None or not isinstance(data.get("name"), str):
        return None

    artifact_path = None
    artifacts = data.get("artifacts")
    if isinstance(artifacts, list) and artifacts and isinstance(artifacts[0], dict):
        raw = artifacts[0].get("path")
        if isinstance(raw, str):
            artifact = Path(raw)
            # Relative artifact paths are relative to the top-level build directory
            if not artifact.is_absolute():
                artifact = build_dir / artifact
            artifact_path = os.path.normpath(artifact)

    return Target(name=data["name"], type=str(data.get("type", "")), path=artifact_path)


def parse_codemodel(reply: Path, index_path: Path) -> list[Target] | None:
    """
    Follow an index file to its codemodel and flatten all targets.

    Targets appearing in several configurations (multi-config generators) are
    reported once, from the first configuration that lists them.

    Returns:
        None if the index or codemodel is unreadable
    """
    index = _read_json(index_path)
    if index is None:
        return None

    objects = index.get("objects", [])
    if not isinstance(objects, list):
        logger.debug(f"Malformed 'objects' in {index_path}")
        return None
    codemodel_file = None
    for obj in objects:
        if isinstance(obj, dict) and obj.get("kind") == "codemodel" and _is_file_ref(obj.get("jsonFile")):
            codemodel_file = reply / obj["jsonFile"]
            break
    if codemodel_file is None:
        logger.debug(f"No codemodel referenced from {index_path}")
        return None

    codemodel = _read_json(codemodel_file)
    if codemodel is None:
        return None
    configurations = codemodel.get("configurations", [])
    if not isinstance(configurations, list):
        logger.debug(f"Malformed 'configurations' in {codemodel_file}")
        return None

    # reply -> v1 -> api -> .cmake -> build dir
    build_dir = reply.parent.parent.parent.parent

    targets: list[Target] = []
    seen: set[str] = set()
    for config in configurations:
        if not isinstance(config, dict):
            continue
        refs = config.get("targets", [])
        if not isinstance(refs, list):
            logger.debug(f"Skipping configuration with malformed 'targets' in {codemodel_file}")
            continue
        for ref in refs:
            if not isinstance(ref, dict) or not _is_file_ref(ref.get("jsonFile")):
                continue
            target = parse_target(reply / ref["jsonFile"], build_dir)
            if target is None:
                logger.debug(f"Skipping unreadable target object {ref['jsonFile']}")
                continue
            if target.name in seen:
                continue
            seen.add(target.name)
            targets.append(target)

    return targets


def _is_file_ref(value: object) -> bool:
    return isinstance(value, str) and bool(value)


def get_targets(root: str | Path, binary_dir: str | Path | None) -> list[Target] | None:
    """
    All configured targets for a build directory.

    Returns:
        None if ``binary_dir`` is None, the project has not been configured with
        a query in place, or the reply could not be parsed
    """
    if binary_dir is None:
        return None

    build = _anchor(root, binary_dir)
    reply = reply_dir(build)
    index_path = find_reply_index(reply)
    if index_path is None:
        logger.debug(f"No File API reply in {reply}")
        return None

    targets = parse_codemodel(reply, index_path)
    if targets is not None:
        logger.debug(f"Found {len(targets)} targets in {build}")
    return targets


def get_executables(root: str | Path, binary_dir: str | Path | None) -> list[Target] | None:
    """Executable targets only; None under the same conditions as get_targets()."""
    targets = get_targets(root, binary_dir)
    if targets is None:
        return None
    return [t for t in targets if t.is_executable]
