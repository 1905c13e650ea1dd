__version__ = "0.1.0"

from .backend import TASK_NAMES, Backend, TaskTemplate
from .backends import CMAKE, PYTHON, BackendRegistry, default_registry
from .detect import find_root, get_backend
from .engine import TaskEngine
from .exceptions import (
    ConfigValidationError,
    MalformedMetadataError,
    NeedsSelectionError,
    NotConfiguredError,
    PresetCycleError,
    ProcessSpawnError,
    ProjectTasksError,
    ResolutionError,
    TargetNotFoundError,
    UnsupportedTaskError,
)
from .file_api import Target
from .job import Job, JobState
from .job_handle import JobHandle
from .job_runner import JobRunner
from .load_config import ProjectConfig, TargetConfig, load_config, load_project_config
from .logging_config import disable_logging, get_log_file_path, setup_logging
from .output_sink import ListSink, OutputSink, TerminalSink
from .presets import Preset
from .resolver import Invocation, ResolvedCommand, TaskResolver, resolve
from .session import SessionStore

__all__ = [
    # Version
    "__version__",
    # Core Components
    "Backend",
    "BackendRegistry",
    "CMAKE",
    "default_registry",
    "find_root",
    "get_backend",
    "Invocation",
    "Preset",
    "PYTHON",
    "resolve",
    "ResolvedCommand",
    "SessionStore",
    "Target",
    "TASK_NAMES",
    "TaskEngine",
    "TaskResolver",
    "TaskTemplate",
    # Jobs
    "Job",
    "JobHandle",
    "JobRunner",
    "JobState",
    # Output
    "ListSink",
    "OutputSink",
    "TerminalSink",
    # Configuration
    "load_config",
    "load_project_config",
    "ProjectConfig",
    "TargetConfig",
    # Logging
    "disable_logging",
    "get_log_file_path",
    "setup_logging",
    # Exceptions
    "ConfigValidationError",
    "MalformedMetadataError",
    "NeedsSelectionError",
    "NotConfiguredError",
    "PresetCycleError",
    "ProcessSpawnError",
    "ProjectTasksError",
    "ResolutionError",
    "TargetNotFoundError",
    "UnsupportedTaskError",
]
