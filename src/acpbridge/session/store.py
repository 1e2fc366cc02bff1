"""Per-conversation state.

A ``Session`` is plain data owned by the ``SessionStore``. All mutation
happens on the single event loop, so nothing here locks.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from acpbridge.errors import SessionExists
from acpbridge.logging import get_logger
from acpbridge.session.registry import SessionRegistry

if TYPE_CHECKING:
    from acpbridge.session.audit import AuditSink
    from acpbridge.upstream.query import UpstreamQuery

log = get_logger("session")


class CancellationToken:
    """Abort flag for one in-flight turn."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class PendingToolUse:
    """A tool invocation that has started but has no result yet.

    Attributes:
        tool_call_id: Client-facing call id (the upstream invocation id).
        tool_name: Upstream tool name.
        raw_input: Tool arguments as sent by the upstream.
        preview: Diff content shown on the initial tool_call, if any.
        local: Handled by the bridge itself (plan updates); its result is
            consumed without any client notification.
    """

    tool_call_id: str
    tool_name: str
    raw_input: dict[str, Any] = field(default_factory=dict)
    preview: list[Any] | None = None
    local: bool = False


@dataclass
class ToolOutcome:
    """A completed tool invocation waiting to be flushed to the client."""

    tool_name: str
    tool_call_id: str
    result_text: str
    is_error: bool = False
    raw_output: Any = None
    preview: list[Any] | None = None


@dataclass
class Session:
    """State for one client conversation."""

    session_id: str
    cwd: str = ""
    upstream_session_id: str | None = None
    pending_cancellation: CancellationToken | None = None
    pending_resolution: asyncio.Future[str] | None = None
    pending_tool_uses: dict[str, PendingToolUse] = field(default_factory=dict)
    completed_tool_queue: list[ToolOutcome] = field(default_factory=list)
    cancelled: bool = False
    active_query: UpstreamQuery | None = None
    active_task: asyncio.Task[None] | None = None
    log_sink: AuditSink | None = None

    @property
    def turn_in_flight(self) -> bool:
        return self.pending_resolution is not None and not self.pending_resolution.done()

    def reset_tools(self) -> None:
        self.pending_tool_uses.clear()
        self.completed_tool_queue.clear()


class SessionStore:
    """Owns every live Session, keyed by client session id."""

    def __init__(self, registry: SessionRegistry | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self.registry = registry or SessionRegistry()

    def create(self, session_id: str, cwd: str = "") -> Session:
        if session_id in self._sessions:
            raise SessionExists(session_id)
        session = Session(session_id=session_id, cwd=cwd)
        self._sessions[session_id] = session
        log.debug("Session %s created (cwd=%s)", session_id, cwd)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        """Drop a session and any upstream id bound to it."""
        self._sessions.pop(session_id, None)
        self.registry.unbind_client(session_id)
        log.debug("Session %s deleted", session_id)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
