"""Tool-call lifecycle: classification, plans and completion tracking."""

from acpbridge.tools.kinds import TOOL_KINDS, tool_kind, tool_path, tool_title
from acpbridge.tools.plan import PLAN_TOOL_NAME, build_plan_update, classify_priority
from acpbridge.tools.tracker import ToolCallTracker, build_preview, result_text

__all__ = [
    "PLAN_TOOL_NAME",
    "TOOL_KINDS",
    "ToolCallTracker",
    "build_plan_update",
    "build_preview",
    "classify_priority",
    "result_text",
    "tool_kind",
    "tool_path",
    "tool_title",
]
