# project_tasks/logging_config.py
"""
Opt-in logging setup for project_tasks.

The library itself only creates module loggers under the ``project_tasks``
namespace and never touches the root logger. Hosts that want output call
setup_logging(); tests can call disable_logging().
"""

from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "project_tasks"
LOG_DIR = Path.home() / ".project-tasks"
LOG_FILE = "project-tasks.log"

FORMATS = {
    "simple": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    "detailed": "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s",
}

# Handlers installed by setup_logging(), so repeated calls replace instead of stacking
_installed: list[logging.Handler] = []


def get_log_file_path() -> Path:
    """Where setup_logging(file=True) writes."""
    return LOG_DIR / LOG_FILE


def _clear_handlers(logger: logging.Logger) -> None:
    for handler in _installed:
        logger.removeHandler(handler)
        handler.close()
    _installed.clear()


def setup_logging(
    level: str | int = "INFO",
    *,
    console: bool = True,
    file: bool = False,
    format: str = "simple",
    format_string: str | None = None,
    propagate: bool = True,
) -> logging.Logger:
    """
    Configure the ``project_tasks`` logger.

    Args:
        level: Level name or number for the package logger
        console: Log to stderr
        file: Also log to get_log_file_path() (directory created on demand)
        format: "simple" or "detailed" (adds file:line)
        format_string: Custom logging format; overrides ``format``
        propagate: Let records reach the root logger as well. Set False when the
            root logger already has handlers to avoid duplicate lines.

    Returns:
        The configured package logger
    """
    if format_string is None and format not in FORMATS:
        raise ValueError(f"Unknown log format '{format}'. Use one of: {', '.join(FORMATS)}")

    logger = logging.getLogger(LOGGER_NAME)
    _clear_handlers(logger)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = propagate

    formatter = logging.Formatter(format_string or FORMATS[format])

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
        _installed.append(stream_handler)

    if file:
        path = get_log_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        _installed.append(file_handler)

    logger.debug(f"Logging configured (level={level}, console={console}, file={file})")
    return logger


def disable_logging() -> None:
    """Silence all project_tasks logging and remove handlers added by setup_logging()."""
    logger = logging.getLogger(LOGGER_NAME)
    _clear_handlers(logger)
    # Child loggers are NOTSET, so they inherit this level
    logger.setLevel(logging.CRITICAL + 1)
    logger.propagate = False
