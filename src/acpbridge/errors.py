"""Error kinds raised and handled by the bridge core."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge errors."""


class SessionNotFound(BridgeError):
    """A prompt or cancel referenced a session id that does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionExists(BridgeError):
    """A session was created under an id that is already in use."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class UnknownToolResult(BridgeError):
    """A tool result referenced an invocation that is not pending."""

    def __init__(self, tool_use_id: str) -> None:
        super().__init__(f"Tool result for unknown invocation: {tool_use_id}")
        self.tool_use_id = tool_use_id


class UpstreamQueryFailure(BridgeError):
    """The upstream session stream raised mid-turn."""

    def __init__(self, session_id: str, cause: BaseException) -> None:
        super().__init__(f"Upstream query failed for session {session_id}: {cause}")
        self.session_id = session_id
        self.cause = cause


class ClientFileReadFailure(BridgeError):
    """The client could not serve a file read for a resource link."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"Client file read failed for {path}: {cause}")
        self.path = path
        self.cause = cause
