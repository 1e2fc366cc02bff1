"""Tool classification and display titles."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

TOOL_KINDS: dict[str, str] = {
    "Task": "other",
    "Bash": "execute",
    "BashOutput": "other",
    "KillBash": "other",
    "Glob": "search",
    "Grep": "search",
    "LS": "read",
    "Read": "read",
    "NotebookRead": "read",
    "Edit": "edit",
    "MultiEdit": "edit",
    "Write": "edit",
    "NotebookEdit": "edit",
    "WebFetch": "fetch",
    "WebSearch": "search",
    "ExitPlanMode": "switch_mode",
    # server-side tools
    "web_search": "search",
    "web_fetch": "fetch",
}

DEFAULT_KIND = "other"

# Argument keys that name the file a tool touches
PATH_KEYS = ("file_path", "notebook_path")


def tool_kind(name: str, overrides: Mapping[str, str] | None = None) -> str:
    if overrides and name in overrides:
        return overrides[name]
    return TOOL_KINDS.get(name, DEFAULT_KIND)


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def tool_title(name: str, raw_input: Mapping[str, Any] | None) -> str:
    """Build a title like ``Read(file_path: /a/b.py, limit: 20)``."""
    if not raw_input:
        return name
    args = ", ".join(f"{key}: {_render_value(value)}" for key, value in raw_input.items())
    return f"{name}({args})"


def tool_path(raw_input: Mapping[str, Any] | None) -> str | None:
    """Return the file path argument of a file tool, if present."""
    if not raw_input:
        return None
    for key in PATH_KEYS:
        value = raw_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None
