# project_tasks/templates.py
"""
``${var}`` expansion for task command templates.

Undefined variables expand to an empty string, and argv parts that end up
empty are dropped, so optional arguments (e.g. ``${target_flag}``) can be
switched off by leaving the variable unset.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def expand_var(template: str, variables: Mapping[str, str]) -> str:
    """Replace every ``${name}`` in ``template``; unknown names become ''."""
    return _VAR_RE.sub(lambda m: variables.get(m.group(1), "") or "", template)


def expand_cmd(cmd: Iterable[str], variables: Mapping[str, str]) -> list[str]:
    """Expand each argv part and drop the parts that expand to ''."""
    expanded = (expand_var(part, variables) for part in cmd)
    return [part for part in expanded if part != ""]


def referenced_vars(cmd: Iterable[str]) -> set[str]:
    """Names of all ``${var}`` placeholders used in ``cmd``."""
    return {m.group(1) for part in cmd for m in _VAR_RE.finditer(part)}
