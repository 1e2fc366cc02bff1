"""Session and turn orchestration.

The SessionManager is the entry point the ACP agent delegates to. It owns the
SessionStore and drives one upstream query per prompt:

    prompt()  -> convert content, open query, start turn task, await resolution
    turn task -> read upstream events in order, emit client updates, resolve
    cancel()  -> resolve "cancelled", clear turn state, interrupt upstream

Each prompt's resolution is an ``asyncio.Future`` stored on the session. It is
fulfilled exactly once: by a terminal result (after pending tools drain), by
the upstream stream ending, by an upstream failure, or by cancellation.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from acpbridge.content.blocks import to_client_chunk
from acpbridge.content.prompt import PromptConverter
from acpbridge.errors import SessionNotFound, UpstreamQueryFailure
from acpbridge.logging import get_logger
from acpbridge.session.audit import AuditLog
from acpbridge.session.store import CancellationToken, Session, SessionStore
from acpbridge.tools.tracker import ToolCallTracker
from acpbridge.upstream.events import (
    AssistantEvent,
    ResultEvent,
    SystemEvent,
    ToolResultBlock,
    ToolUseBlock,
    UserEvent,
)

if TYPE_CHECKING:
    from acpbridge.session.registry import SessionRegistry
    from acpbridge.upstream.events import UpstreamBlock, UpstreamEvent
    from acpbridge.upstream.query import QueryFactory, UpstreamQuery

log = get_logger("session")

# async (session_id, update) -> None
Notify = Callable[[str, Any], Awaitable[None]]


def stop_reason_for(result: ResultEvent) -> str:
    """Map a terminal upstream result to a client stop reason."""
    if result.subtype == "error_max_turns":
        return "max_turn_requests"
    if result.is_error or result.subtype.startswith("error"):
        return "max_tokens"
    return "end_turn"


@dataclass
class _Turn:
    """State private to one prompt turn."""

    session: Session
    token: CancellationToken
    resolution: asyncio.Future[str]
    query: UpstreamQuery
    deferred: ResultEvent | None = None

    @property
    def live(self) -> bool:
        return not self.token.cancelled and not self.resolution.done()


class SessionManager:
    """Manages sessions and runs their prompt turns.

    Args:
        notify: Sends a session update to the client. Failures are logged.
        query_factory: Opens the upstream query for a turn.
        store: Session table; a fresh one by default.
        audit: Audit log channel; disabled by default.
        tracker: Tool-call lifecycle tracker.
        converter: Client prompt converter.
    """

    def __init__(
        self,
        notify: Notify | None = None,
        query_factory: QueryFactory | None = None,
        *,
        store: SessionStore | None = None,
        audit: AuditLog | None = None,
        tracker: ToolCallTracker | None = None,
        converter: PromptConverter | None = None,
    ) -> None:
        self._notify = notify
        self._query_factory = query_factory
        self._store = store or SessionStore()
        self._audit = audit or AuditLog()
        self._tracker = tracker or ToolCallTracker()
        self._converter = converter or PromptConverter()

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def registry(self) -> SessionRegistry:
        return self._store.registry

    @property
    def converter(self) -> PromptConverter:
        return self._converter

    @property
    def audit(self) -> AuditLog:
        return self._audit

    def set_notify(self, notify: Notify | None) -> None:
        self._notify = notify

    # --- Session lifecycle ---

    def create_session(self, cwd: str, session_id: str | None = None) -> Session:
        """Create a session and open its audit sink."""
        if session_id is None:
            session_id = str(uuid.uuid4())
        session = self._store.create(session_id, cwd)
        session.log_sink = self._audit.sink(session_id)
        session.log_sink.record("session_init", cwd=cwd)
        log.info("Created session %s (cwd=%s)", session_id, cwd)
        return session

    def ensure_session(self, session_id: str, cwd: str) -> Session:
        """Return the session, registering an empty one if absent."""
        return self._store.get(session_id) or self.create_session(cwd, session_id)

    def get_session(self, session_id: str) -> Session | None:
        return self._store.get(session_id)

    def list_sessions(self) -> list[str]:
        return self._store.ids()

    async def close_session(self, session_id: str) -> None:
        """Cancel any running turn and delete the session."""
        session = self._store.get(session_id)
        if session is None:
            return
        _, task = self._abort_turn(session)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._record(session, "session_closed")
        self._store.delete(session_id)
        log.info("Closed session %s", session_id)

    async def close_all(self) -> None:
        """Close every session and drain the audit log."""
        for session_id in self._store.ids():
            await self.close_session(session_id)
        await self._audit.close()

    # --- Prompt ---

    async def prompt(self, session_id: str, content: list[Any]) -> str:
        """Run one prompt turn and return its stop reason.

        A turn already in flight on the session is cancelled first.

        Raises:
            SessionNotFound: Unknown session id.
            UpstreamQueryFailure: The upstream query could not be opened or
                its stream raised mid-turn.
        """
        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        stale_query, stale_task = None, None
        if session.pending_resolution is not None or session.pending_cancellation is not None:
            log.info("Session %s: new prompt supersedes the turn in flight", session_id)
            stale_query, stale_task = self._abort_turn(session)

        # Install this turn's state before the first suspension point so a
        # concurrent prompt or cancel always sees it.
        session.cancelled = False
        token = CancellationToken()
        resolution: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        session.pending_cancellation = token
        session.pending_resolution = resolution
        self._record(session, "turn_start", parts=len(content))

        try:
            await self._stop_upstream(session_id, stale_query, stale_task)
            if not token.cancelled:
                upstream_content = await self._converter.to_upstream(session_id, content)
                if not token.cancelled:
                    self._start_turn(session, token, resolution, upstream_content)
            stop_reason = await resolution
        except asyncio.CancelledError:
            # The client request itself went away
            if stale_task is not None and not stale_task.done():
                stale_task.cancel()
            if session.pending_resolution is resolution:
                _, task = self._abort_turn(session)
                if task is not None:
                    task.cancel()
            raise
        except Exception as e:
            self._release(session, token, resolution)
            self._record(session, "turn_end", error=str(e))
            raise

        self._record(session, "turn_end", stop_reason=stop_reason)
        log.info("Session %s: turn ended (%s)", session_id, stop_reason)
        return stop_reason

    def _start_turn(
        self,
        session: Session,
        token: CancellationToken,
        resolution: asyncio.Future[str],
        upstream_content: list[dict[str, Any]],
    ) -> None:
        if self._query_factory is None:
            raise UpstreamQueryFailure(session.session_id, RuntimeError("no upstream configured"))
        try:
            query = self._query_factory(upstream_content, session)
        except Exception as e:
            raise UpstreamQueryFailure(session.session_id, e) from e

        turn = _Turn(session=session, token=token, resolution=resolution, query=query)
        session.active_query = query
        session.active_task = asyncio.create_task(
            self._run_turn(turn), name=f"turn-{session.session_id}"
        )

    # --- Cancellation ---

    async def cancel(self, session_id: str) -> None:
        """Cancel the session's turn in flight, if any.

        The prompt resolves with ``cancelled`` before the upstream is asked
        to stop; interrupt failures are logged.
        """
        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        query, task = self._abort_turn(session)
        await self._stop_upstream(session_id, query, task)

    async def _stop_upstream(
        self,
        session_id: str,
        query: UpstreamQuery | None,
        task: asyncio.Task[None] | None,
    ) -> None:
        """Interrupt an aborted turn's query, then cancel its task."""
        if query is not None:
            try:
                await query.interrupt()
            except Exception as e:
                log.warning("Session %s: upstream interrupt failed: %s", session_id, e)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _abort_turn(
        self, session: Session
    ) -> tuple[UpstreamQuery | None, asyncio.Task[None] | None]:
        """Synchronously clear all turn state; return the query and task to stop."""
        session.cancelled = True
        if session.pending_cancellation is not None:
            session.pending_cancellation.cancel()
        resolution = session.pending_resolution
        if resolution is not None and not resolution.done():
            resolution.set_result("cancelled")
            log.info("Session %s: turn cancelled", session.session_id)
        session.pending_resolution = None
        session.pending_cancellation = None

        # The upstream id itself is kept so the next turn resumes it
        self._store.registry.unbind_client(session.session_id)
        session.reset_tools()

        query, task = session.active_query, session.active_task
        session.active_query = None
        session.active_task = None
        return query, task

    def _release(
        self, session: Session, token: CancellationToken, resolution: asyncio.Future[str]
    ) -> None:
        if session.pending_resolution is resolution:
            session.pending_resolution = None
        if session.pending_cancellation is token:
            session.pending_cancellation = None

    # --- Turn task ---

    async def _run_turn(self, turn: _Turn) -> None:
        session = turn.session
        query = turn.query
        try:
            async with aclosing(query.events()) as events:
                async for event in events:
                    if not turn.live or session.cancelled:
                        break
                    await self._dispatch(turn, event)
                    if not turn.live:
                        break
                else:
                    if turn.live:
                        await self._finish_stream(turn)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if turn.live:
                log.error("Session %s: upstream query failed: %s", session.session_id, e)
                session.reset_tools()
                self._fail(turn, UpstreamQueryFailure(session.session_id, e))
            else:
                log.debug("Session %s: upstream error after turn ended: %s", session.session_id, e)
        finally:
            try:
                await query.close()
            except Exception as e:
                log.warning("Session %s: closing upstream query failed: %s", session.session_id, e)
            if session.active_query is query:
                session.active_query = None
            if session.active_task is asyncio.current_task():
                session.active_task = None

    async def _dispatch(self, turn: _Turn, event: UpstreamEvent) -> None:
        match event:
            case SystemEvent():
                if event.is_init and event.session_id:
                    self._bind_upstream(turn.session, event.session_id)
            case AssistantEvent(content=blocks) | UserEvent(content=blocks):
                for block in blocks:
                    if not turn.live:
                        return
                    await self._handle_block(turn, block)
            case ResultEvent():
                turn.deferred = event
                log.debug(
                    "Session %s: result %s (pending tools: %d)",
                    turn.session.session_id,
                    event.subtype,
                    len(turn.session.pending_tool_uses),
                )
                await self._maybe_resolve(turn)

    async def _handle_block(self, turn: _Turn, block: UpstreamBlock) -> None:
        session = turn.session
        match block:
            case ToolUseBlock():
                for update in self._tracker.start(session, block):
                    await self._emit(turn, update)
            case ToolResultBlock():
                self._tracker.complete(session, block)
                await self._maybe_resolve(turn)
            case _:
                await self._flush(turn)
                await self._emit(turn, to_client_chunk(block))

    def _bind_upstream(self, session: Session, upstream_id: str) -> None:
        registry = self._store.registry
        if session.upstream_session_id is not None:
            if session.upstream_session_id != upstream_id:
                log.debug(
                    "Session %s: ignoring upstream id %s, already bound to %s",
                    session.session_id,
                    upstream_id,
                    session.upstream_session_id,
                )
            elif registry.upstream_for(session.session_id) is None:
                # Resumed after a cancel dropped the mapping
                registry.bind(upstream_id, session.session_id)
            return
        if not registry.bind(upstream_id, session.session_id):
            return
        session.upstream_session_id = upstream_id
        self._record(session, "upstream_session", upstream_session_id=upstream_id)
        log.info("Session %s bound to upstream session %s", session.session_id, upstream_id)

    async def _maybe_resolve(self, turn: _Turn) -> None:
        if turn.deferred is None or turn.session.pending_tool_uses or not turn.live:
            return
        await self._flush(turn)
        self._resolve(turn, stop_reason_for(turn.deferred))

    async def _finish_stream(self, turn: _Turn) -> None:
        """The upstream stream ended with the prompt still unresolved."""
        session = turn.session
        await self._flush(turn)
        if session.pending_tool_uses:
            log.warning(
                "Session %s: stream ended with %d tool call(s) pending: %s",
                session.session_id,
                len(session.pending_tool_uses),
                ", ".join(session.pending_tool_uses),
            )
            session.pending_tool_uses.clear()
        reason = stop_reason_for(turn.deferred) if turn.deferred else "end_turn"
        self._resolve(turn, reason)

    def _resolve(self, turn: _Turn, stop_reason: str) -> None:
        if turn.resolution.done():
            return
        turn.resolution.set_result(stop_reason)
        self._release(turn.session, turn.token, turn.resolution)

    def _fail(self, turn: _Turn, error: Exception) -> None:
        if turn.resolution.done():
            return
        turn.resolution.set_exception(error)
        self._release(turn.session, turn.token, turn.resolution)

    # --- Emission ---

    async def _flush(self, turn: _Turn) -> None:
        for update in self._tracker.flush(turn.session):
            await self._emit(turn, update)

    async def _emit(self, turn: _Turn, update: Any) -> None:
        if turn.token.cancelled or self._notify is None:
            return
        try:
            await self._notify(turn.session.session_id, update)
        except Exception as e:
            log.warning("Session %s: failed to send update: %s", turn.session.session_id, e)

    def _record(self, session: Session, kind: str, **fields: Any) -> None:
        if session.log_sink is not None:
            session.log_sink.record(kind, **fields)
