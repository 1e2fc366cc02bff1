"""Tool-call lifecycle tracking.

Each upstream tool invocation moves ``pending -> completed | failed``:

- ``start`` registers the invocation and returns the ``tool_call``
  notification (status pending, kind, title, diff preview for file
  mutations). The todo tool is handled locally and yields a ``plan``
  update instead.
- ``complete`` moves a pending invocation into the session's completed
  queue. Nothing is emitted here.
- ``flush`` drains the completed queue in completion order and returns the
  ``tool_call_update`` notifications. The session manager calls it just
  before each message or thought chunk and once when the turn resolves.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from acp import helpers
from acp.schema import ToolCallLocation

from acpbridge.errors import UnknownToolResult
from acpbridge.logging import get_logger
from acpbridge.session.store import PendingToolUse, ToolOutcome
from acpbridge.tools.kinds import tool_kind, tool_path, tool_title
from acpbridge.tools.plan import PLAN_TOOL_NAME, build_plan_update

if TYPE_CHECKING:
    from acpbridge.session.store import Session
    from acpbridge.upstream.events import ToolResultBlock, ToolUseBlock

log = get_logger("tools")

VALID_KINDS = frozenset(
    {"read", "edit", "delete", "move", "search", "execute", "think", "fetch", "switch_mode", "other"}
)

COMPLETION_TITLES = {
    "Edit": "Edited",
    "MultiEdit": "Multi-edited",
    "Write": "Created",
}


def build_preview(name: str, raw_input: Mapping[str, Any]) -> list[Any] | None:
    """Diff content for file-mutating tools, or None for everything else."""
    path = str(raw_input.get("file_path", ""))
    match name:
        case "Edit":
            return [
                helpers.tool_diff_content(
                    path,
                    str(raw_input.get("new_string", "")),
                    str(raw_input.get("old_string", "")),
                )
            ]
        case "Write":
            return [helpers.tool_diff_content(path, str(raw_input.get("content", "")), "")]
        case "MultiEdit":
            edits = raw_input.get("edits")
            return [
                helpers.tool_diff_content(
                    path,
                    str(edit.get("new_string", "")),
                    str(edit.get("old_string", "")),
                )
                for edit in (edits if isinstance(edits, list) else [])
                if isinstance(edit, dict)
            ]
        case _:
            return None


def _part_text(part: Any) -> str | None:
    if isinstance(part, str):
        return part
    if not isinstance(part, dict):
        return None
    if isinstance(part.get("text"), str):
        return part["text"]
    if part.get("type") == "web_search_result":
        title = part.get("title", "")
        url = part.get("url", "")
        return f"{title} ({url})" if title else url
    return None


def result_text(content: Any) -> str:
    """Flatten tool result content to text.

    Strings pass through, lists join their text parts with newlines and
    missing content becomes the empty string.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = (_part_text(p) for p in content)
        return "\n".join(p for p in parts if p is not None)
    if isinstance(content, dict):
        if content.get("type") == "web_search_tool_result_error":
            return f"Error: {content.get('error_code', 'unknown')}"
        return _part_text(content) or ""
    return str(content)


class ToolCallTracker:
    """Turns upstream tool blocks into client tool notifications.

    Args:
        kind_overrides: Extra ``tool name -> kind`` entries from config.
            Entries naming an unknown kind are ignored.
    """

    def __init__(self, kind_overrides: Mapping[str, str] | None = None) -> None:
        self._kinds: dict[str, str] = {}
        for name, kind in (kind_overrides or {}).items():
            if kind in VALID_KINDS:
                self._kinds[name] = kind
            else:
                log.warning("Ignoring tool kind override %s -> %s", name, kind)

    def start(self, session: Session, block: ToolUseBlock) -> list[Any]:
        """Register a tool invocation and return the updates announcing it."""
        raw_input = dict(block.input or {})

        if block.name == PLAN_TOOL_NAME:
            session.pending_tool_uses[block.id] = PendingToolUse(
                tool_call_id=block.id,
                tool_name=block.name,
                raw_input=raw_input,
                local=True,
            )
            return [build_plan_update(raw_input.get("todos"))]

        preview = build_preview(block.name, raw_input)
        session.pending_tool_uses[block.id] = PendingToolUse(
            tool_call_id=block.id,
            tool_name=block.name,
            raw_input=raw_input,
            preview=preview,
        )

        path = tool_path(raw_input)
        log.debug("Tool %s started: %s", block.id, block.name)
        return [
            helpers.start_tool_call(
                block.id,
                tool_title(block.name, raw_input),
                kind=tool_kind(block.name, self._kinds),
                status="pending",
                content=list(preview) if preview else None,
                locations=[ToolCallLocation(path=path)] if path else None,
                raw_input=raw_input,
            )
        ]

    def complete(self, session: Session, block: ToolResultBlock) -> None:
        """Move a pending invocation to the completed queue.

        Results for invocations that are not pending are logged and dropped.
        """
        pending = session.pending_tool_uses.pop(block.tool_use_id, None)
        if pending is None:
            log.warning("%s", UnknownToolResult(block.tool_use_id))
            return

        if pending.local:
            log.debug("Local tool %s (%s) completed", block.tool_use_id, pending.tool_name)
            return

        session.completed_tool_queue.append(
            ToolOutcome(
                tool_name=pending.tool_name,
                tool_call_id=pending.tool_call_id,
                result_text=result_text(block.content),
                is_error=block.is_error,
                raw_output=block.content,
                preview=pending.preview,
            )
        )
        log.debug(
            "Tool %s (%s) queued, error=%s", block.tool_use_id, pending.tool_name, block.is_error
        )

    def flush(self, session: Session) -> list[Any]:
        """Drain the completed queue, oldest first."""
        if not session.completed_tool_queue:
            return []
        outcomes = list(session.completed_tool_queue)
        session.completed_tool_queue.clear()
        return [self._completion_update(outcome) for outcome in outcomes]

    def _completion_update(self, outcome: ToolOutcome) -> Any:
        status = "failed" if outcome.is_error else "completed"
        text_content = helpers.tool_content(helpers.text_block(outcome.result_text))

        if outcome.preview:
            return helpers.update_tool_call(
                outcome.tool_call_id,
                status=status,
                title=COMPLETION_TITLES.get(outcome.tool_name, outcome.tool_name),
                content=[*outcome.preview, text_content],
                raw_output=outcome.raw_output,
            )

        return helpers.update_tool_call(
            outcome.tool_call_id,
            status=status,
            content=[text_content],
        )
