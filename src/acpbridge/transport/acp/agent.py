"""ACP Agent implementation for acpbridge.

This module provides the ACP-compatible agent that editors (Zed, Rider and
other ACP clients) talk to. Requests are delegated to the SessionManager,
which drives the upstream Claude session and streams updates back through
``session_update`` notifications.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import acp
from acp.schema import (
    AgentCapabilities,
    ClientCapabilities,
    Implementation,
    PromptCapabilities,
)

from acpbridge import __version__
from acpbridge.config import get_config
from acpbridge.errors import SessionNotFound, UpstreamQueryFailure
from acpbridge.logging import get_logger
from acpbridge.session.audit import AuditLog
from acpbridge.session.session_manager import SessionManager
from acpbridge.tools.tracker import ToolCallTracker
from acpbridge.upstream.query import claude_query_factory

log = get_logger("acp")

if TYPE_CHECKING:
    from acp.interfaces import Client

    from acpbridge.config.schema import Config


def build_manager(config: Config) -> SessionManager:
    """Create a SessionManager wired from config (audit dir, tool kinds)."""
    audit_dir = config.audit.dir if config.audit.enabled else None
    if config.audit.enabled and not audit_dir:
        log.warning("Audit enabled without a directory; audit records are disabled")
    return SessionManager(
        query_factory=claude_query_factory(),
        audit=AuditLog(audit_dir),
        tracker=ToolCallTracker(config.tools.kinds),
    )


class BridgeAgent:
    """ACP Agent adapter for the upstream Claude session.

    This implements the ACP Agent protocol by delegating to
    SessionManager for session state and turn orchestration.
    """

    def __init__(self, manager: SessionManager | None = None) -> None:
        self._manager = manager or build_manager(get_config())
        self._manager.set_notify(self._send_update)
        self._conn: Client | None = None
        self._client_capabilities: ClientCapabilities | None = None

    @property
    def manager(self) -> SessionManager:
        return self._manager

    def on_connect(self, conn: Client) -> None:
        """Called when a client connects."""
        self._conn = conn

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: ClientCapabilities | None = None,
        client_info: Implementation | None = None,
        **kwargs: Any,
    ) -> acp.InitializeResponse:
        """Handle initialization request from client."""
        self._client_capabilities = client_capabilities
        can_read = bool(
            client_capabilities
            and client_capabilities.fs
            and client_capabilities.fs.read_text_file
        )
        self._manager.converter.set_file_reader(self._read_text_file if can_read else None)
        log.info(
            "Client %s initialized (protocol=%s, read_text_file=%s)",
            client_info.name if client_info else "unknown",
            protocol_version,
            can_read,
        )

        return acp.InitializeResponse(
            protocol_version=acp.PROTOCOL_VERSION,
            agent_info=Implementation(
                name="acpbridge",
                version=__version__,
            ),
            agent_capabilities=AgentCapabilities(
                load_session=True,
                prompt_capabilities=PromptCapabilities(
                    image=True,
                    audio=False,
                    embedded_context=True,
                ),
            ),
        )

    async def new_session(
        self,
        cwd: str,
        mcp_servers: list[Any] | None = None,
        **kwargs: Any,
    ) -> acp.NewSessionResponse:
        """Create a new session."""
        session = self._manager.create_session(cwd=cwd)
        return acp.NewSessionResponse(session_id=session.session_id)

    async def load_session(
        self,
        cwd: str,
        mcp_servers: list[Any] | None = None,
        session_id: str = "",
        **kwargs: Any,
    ) -> acp.LoadSessionResponse | None:
        """Register the session id without replaying any history."""
        if self._manager.get_session(session_id):
            log.info("Session %s already loaded", session_id)
        else:
            self._manager.ensure_session(session_id, cwd)
            log.info("Session %s registered for load (no history replay)", session_id)
        return acp.LoadSessionResponse()

    async def authenticate(
        self,
        method_id: str,
        **kwargs: Any,
    ) -> acp.AuthenticateResponse | None:
        """Handle authentication (not implemented)."""
        return None

    async def prompt(
        self,
        prompt: list[Any],
        session_id: str,
        **kwargs: Any,
    ) -> acp.PromptResponse:
        """Handle a prompt request.

        Updates are streamed via session_update while the turn runs; the
        response carries the turn's stop reason.
        """
        try:
            stop_reason = await self._manager.prompt(session_id, prompt)
        except SessionNotFound as e:
            raise acp.RequestError(
                code=-32600,
                message=str(e),
            ) from e
        except UpstreamQueryFailure as e:
            log.error("Prompt failed for session %s: %s", session_id, e.cause)
            raise acp.RequestError(
                code=-32603,  # Internal error
                message="Upstream query failed",
                data={"details": str(e.cause)},
            ) from e

        return acp.PromptResponse(stop_reason=stop_reason)

    async def cancel(self, session_id: str, **kwargs: Any) -> None:
        """Cancel the current operation in a session."""
        try:
            await self._manager.cancel(session_id)
        except SessionNotFound:
            log.warning("Cancel for unknown session %s", session_id)

    async def ext_method(
        self,
        method: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        """Handle extension methods."""
        return {}

    async def ext_notification(
        self,
        method: str,
        params: dict[str, Any],
    ) -> None:
        """Handle extension notifications."""
        log.debug("Ignoring extension notification %s", method)

    async def shutdown(self) -> None:
        """Close all sessions and flush the audit log."""
        await self._manager.close_all()

    async def _send_update(self, session_id: str, update: Any) -> None:
        if not self._conn:
            return
        await self._conn.session_update(session_id, update)

    async def _read_text_file(self, session_id: str, path: str) -> str:
        if not self._conn:
            raise RuntimeError("No client connection")
        response = await self._conn.read_text_file(path=path, session_id=session_id)
        return response.content


def create_agent() -> BridgeAgent:
    """Create a new acpbridge ACP agent."""
    return BridgeAgent()
