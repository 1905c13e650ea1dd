# tests/conftest.py
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import json
import logging
from pathlib import Path

import pytest

from project_tasks.backends import default_registry
from project_tasks.session import SessionStore


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


CONFIGURE_PRESETS = {
    "version": 6,
    "configurePresets": [
        {
            "name": "base",
            "hidden": True,
            "generator": "Ninja",
            "binaryDir": "${sourceDir}/build/${presetName}",
        },
        {
            "name": "debug",
            "inherits": "base",
            "displayName": "Debug",
            "cacheVariables": {"CMAKE_BUILD_TYPE": "Debug"},
        },
        {
            "name": "release",
            "inherits": "base",
            "displayName": "Release",
            "cacheVariables": {"CMAKE_BUILD_TYPE": "Release"},
        },
    ],
}


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def session():
    return SessionStore()


@pytest.fixture
def cmake_plain_project(tmp_path):
    """CMakeLists.txt only: no presets, fallback commands."""
    (tmp_path / "CMakeLists.txt").write_text("cmake_minimum_required(VERSION 3.20)\nproject(demo)\n")
    return tmp_path


@pytest.fixture
def cmake_presets_project(cmake_plain_project):
    """Configure presets {base (hidden), debug, release}; no build or test presets."""
    write_json(cmake_plain_project / "CMakePresets.json", CONFIGURE_PRESETS)
    return cmake_plain_project


@pytest.fixture
def cmake_build_presets_project(cmake_plain_project):
    """Configure presets plus build and test presets bound to them."""
    data = dict(CONFIGURE_PRESETS)
    data["buildPresets"] = [
        {"name": "debug-build", "configurePreset": "debug"},
        {"name": "release-build", "configurePreset": "release"},
    ]
    data["testPresets"] = [
        {"name": "debug-test", "configurePreset": "debug"},
    ]
    write_json(cmake_plain_project / "CMakePresets.json", data)
    return cmake_plain_project


@pytest.fixture
def python_project(tmp_path):
    """pyproject.toml plus src/main.py, in its own directory beside any CMake fixture."""
    root = tmp_path / "pyproj"
    (root / "src").mkdir(parents=True)
    (root / "pyproject.toml").write_text('[project]\nname = "demo"\nversion = "0.1.0"\n')
    (root / "src" / "main.py").write_text("print('hello')\n")
    return root


@pytest.fixture
def mark_configured():
    """Factory: create CMakeCache.txt in a build directory."""

    def _make(binary_dir: Path) -> Path:
        binary_dir = Path(binary_dir)
        binary_dir.mkdir(parents=True, exist_ok=True)
        (binary_dir / "CMakeCache.txt").write_text("CMAKE_BUILD_TYPE:STRING=Debug\n")
        return binary_dir

    return _make


@pytest.fixture
def file_api_reply():
    """
    Factory fixture that writes a CMake File API reply tree.
    Use it like:
        file_api_reply(build_dir, [("test_app", "EXECUTABLE", "bin/test_app")])
    A path of None writes a target without artifacts.
    """

    def _make(binary_dir, targets, index_name="index-2024-01-01T00-00-00-0000.json"):
        reply = Path(binary_dir) / ".cmake" / "api" / "v1" / "reply"
        refs = []
        for name, target_type, path in targets:
            json_file = f"target-{name}-Debug-0123.json"
            target = {"name": name, "type": target_type}
            if path is not None:
                target["artifacts"] = [{"path": path}]
            write_json(reply / json_file, target)
            refs.append({"name": name, "jsonFile": json_file})
        write_json(
            reply / "codemodel-v2-0123.json",
            {
                "kind": "codemodel",
                "paths": {"build": str(binary_dir), "source": str(Path(binary_dir).parent)},
                "configurations": [{"name": "Debug", "targets": refs}],
            },
        )
        write_json(
            reply / index_name,
            {
                "cmake": {"version": {"string": "3.28.0"}},
                "objects": [
                    {"kind": "codemodel", "version": {"major": 2, "minor": 6}, "jsonFile": "codemodel-v2-0123.json"}
                ],
            },
        )
        return reply

    return _make


@pytest.fixture
def write_presets():
    """Factory: write a presets file (CMakePresets.json by default) into a root."""

    def _write(root, data, filename="CMakePresets.json"):
        return write_json(Path(root) / filename, data)

    return _write


@pytest.fixture(autouse=True)
def restore_package_logger():
    """setup_logging()/disable_logging() change the package logger; put it back after each test."""
    logger = logging.getLogger("project_tasks")
    level, propagate, handlers = logger.level, logger.propagate, list(logger.handlers)
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate
