# project_tasks/backends.py
"""
Built-in backend definitions and the registry that orders them.

Registry order is detection priority: when several backends match the same
directory, the first registered one wins. The built-in order is cmake, then
python.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .backend import Backend, TaskTemplate

logger = logging.getLogger(__name__)


CMAKE = Backend(
    name="cmake",
    markers=("CMakePresets.json", "CMakeUserPresets.json", "CMakeLists.txt"),
    preset_aware=True,
    tasks={
        "configure": TaskTemplate(
            # -B keeps the build out-of-source when the preset lacks binaryDir
            cmd=("cmake", "--preset", "${preset}", "-B", "${binary_dir}"),
            fallback_cmd=("cmake", "-B", "${binary_dir}", "-S", "."),
            needs_preset=True,
        ),
        "build": TaskTemplate(
            cmd=("cmake", "--build", "--preset", "${build_preset}", "${target_flag}", "${target_name}"),
            fallback_cmd=("cmake", "--build", "${binary_dir}", "${target_flag}", "${target_name}"),
            needs_build_preset=True,
            supports_build_target=True,
        ),
        "run": TaskTemplate(
            cmd=("${target_path}",),
            needs_target=True,
            args_passthrough=True,
        ),
        "debug": TaskTemplate(
            cmd=("${target_path}",),
            needs_target=True,
            args_passthrough=True,
            debug_adapter={"type": "codelldb", "request": "launch"},
        ),
        "test": TaskTemplate(
            cmd=("ctest", "--preset", "${test_preset}"),
            fallback_cmd=("ctest", "--test-dir", "${binary_dir}"),
            needs_test_preset=True,
            args_passthrough=True,
        ),
        "package": TaskTemplate(
            cmd=("cmake", "--build", "--preset", "${build_preset}", "--target", "package"),
            fallback_cmd=("cmake", "--build", "${binary_dir}", "--target", "package"),
            needs_build_preset=True,
        ),
        "clean": TaskTemplate(
            cmd=("cmake", "-E", "rm", "-rf", "${binary_dir}"),
            fallback_cmd=("cmake", "-E", "rm", "-rf", "${binary_dir}"),
            needs_preset=True,
        ),
    },
    variables={"build_dir": "build"},
)


PYTHON = Backend(
    name="python",
    markers=("pyproject.toml",),
    tasks={
        "run": TaskTemplate(
            cmd=("uv", "run", "${entry_point}"),
            args_passthrough=True,
        ),
        "debug": TaskTemplate(
            cmd=(
                "uv", "run", "python", "-m", "debugpy",
                "--listen", "5678", "--wait-for-client", "${entry_point}",
            ),
            args_passthrough=True,
            debug_adapter={
                "type": "python",
                "request": "attach",
                "connect": {"host": "127.0.0.1", "port": 5678},
            },
        ),
        "test": TaskTemplate(
            cmd=("uv", "run", "pytest"),
            args_passthrough=True,
        ),
        "package": TaskTemplate(
            cmd=("uv", "build"),
        ),
    },
    variables={"entry_point": "src/main.py"},
)


class BackendRegistry:
    """
    Ordered, immutable collection of backends.

    Iteration order is detection priority. ``register`` returns a new registry
    so a registry handed to an engine never changes underneath it.
    """

    def __init__(self, backends: Iterable[Backend] = ()) -> None:
        self._backends: dict[str, Backend] = {}
        for backend in backends:
            if backend.name in self._backends:
                raise ValueError(f"Duplicate backend name: '{backend.name}'")
            self._backends[backend.name] = backend
        logger.debug(f"BackendRegistry initialized with {len(self._backends)} backends")

    def register(self, backend: Backend, *, first: bool = False) -> BackendRegistry:
        """Return a new registry with ``backend`` added (last, or first when ``first=True``)."""
        others = [b for b in self._backends.values() if b.name != backend.name]
        ordered = [backend, *others] if first else [*others, backend]
        return BackendRegistry(ordered)

    def get(self, name: str) -> Backend | None:
        return self._backends.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._backends)

    def __iter__(self) -> Iterator[Backend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __repr__(self) -> str:
        return f"BackendRegistry({', '.join(self._backends)})"


def default_registry() -> BackendRegistry:
    """Registry with the built-in backends in priority order (cmake, python)."""
    return BackendRegistry([CMAKE, PYTHON])
