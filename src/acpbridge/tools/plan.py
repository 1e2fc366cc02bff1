"""Plan updates built from the upstream todo tool."""

from __future__ import annotations

from typing import Any

from acp import helpers

from acpbridge.logging import get_logger

log = get_logger("tools")

PLAN_TOOL_NAME = "TodoWrite"

# First match wins, in this order
_PRIORITY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("high", ("error", "fix", "bug", "critical")),
    ("medium", ("implement", "add", "create", "build")),
    ("low", ("document", "test", "research", "review")),
)

_STATUSES = {"pending", "in_progress", "completed"}


def classify_priority(content: str) -> str:
    """Classify a todo item as high, medium or low priority.

    Examples:
        >>> classify_priority("Fix login error")
        'high'
        >>> classify_priority("Document API")
        'low'
        >>> classify_priority("Refactor module")
        'medium'
    """
    text = content.lower()
    for priority, keywords in _PRIORITY_KEYWORDS:
        if any(word in text for word in keywords):
            return priority
    return "medium"


def build_plan_update(todos: Any) -> Any:
    """Convert the todo tool's ``todos`` argument into a plan update."""
    entries = []
    for item in todos if isinstance(todos, list) else []:
        if not isinstance(item, dict):
            continue
        content = str(item.get("content", ""))
        status = item.get("status", "pending")
        if status not in _STATUSES:
            log.debug("Unknown todo status %r, using pending", status)
            status = "pending"
        entries.append(
            helpers.plan_entry(content, priority=classify_priority(content), status=status)
        )
    return helpers.update_plan(entries)
