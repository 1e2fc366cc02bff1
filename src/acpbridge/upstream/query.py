"""Upstream query objects.

One query is opened per prompt turn. The session manager only depends on
the ``UpstreamQuery`` protocol; ``ClaudeQuery`` implements it on top of
``claude_agent_sdk.ClaudeSDKClient``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, Protocol

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient

from acpbridge.logging import get_logger
from acpbridge.upstream.events import UpstreamEvent, from_sdk_message

if TYPE_CHECKING:
    from acpbridge.config.schema import UpstreamConfig
    from acpbridge.session.store import Session

log = get_logger("upstream")


class UpstreamQuery(Protocol):
    """A single streaming turn against the upstream session."""

    def events(self) -> AsyncGenerator[UpstreamEvent, None]:
        """Yield upstream events in arrival order."""
        ...

    async def interrupt(self) -> None:
        """Ask the upstream to stop early. Best-effort."""
        ...

    async def close(self) -> None:
        """Release the query's resources."""
        ...


QueryFactory = Callable[[list[dict[str, Any]], "Session"], UpstreamQuery]


def build_options(
    config: UpstreamConfig,
    cwd: str | None,
    resume: str | None,
) -> ClaudeAgentOptions:
    """Build SDK options from upstream config plus per-session state."""
    kwargs: dict[str, Any] = {
        "cwd": cwd,
        "resume": resume,
        "allowed_tools": list(config.allowed_tools),
        "disallowed_tools": list(config.disallowed_tools),
    }
    if config.model:
        kwargs["model"] = config.model
    if config.permission_mode:
        kwargs["permission_mode"] = config.permission_mode
    if config.max_turns is not None:
        kwargs["max_turns"] = config.max_turns
    if config.system_prompt:
        kwargs["system_prompt"] = config.system_prompt
    if config.cli_path:
        kwargs["cli_path"] = config.cli_path
    return ClaudeAgentOptions(**kwargs)


class ClaudeQuery:
    """One prompt turn driven through ``ClaudeSDKClient``.

    The client is connected lazily when ``events()`` is first iterated, so
    connect, read and disconnect all happen inside the turn task.

    Args:
        options: Prepared SDK options (cwd and resume already set).
        content: Upstream content blocks for the user message.
        client_factory: Override for tests; defaults to ``ClaudeSDKClient``.
    """

    def __init__(
        self,
        options: ClaudeAgentOptions,
        content: list[dict[str, Any]],
        client_factory: Callable[[ClaudeAgentOptions], Any] = ClaudeSDKClient,
    ) -> None:
        self._options = options
        self._content = content
        self._client_factory = client_factory
        self._client: Any | None = None
        self._closed = False

    async def _message_stream(self) -> AsyncIterator[dict[str, Any]]:
        yield {
            "type": "user",
            "message": {"role": "user", "content": self._content},
            "parent_tool_use_id": None,
            "session_id": "default",
        }

    async def events(self) -> AsyncGenerator[UpstreamEvent, None]:
        client = self._client_factory(self._options)
        self._client = client
        await client.connect()
        log.debug("Upstream client connected (resume=%s)", self._options.resume)
        await client.query(self._message_stream())

        # receive_messages() keeps reading past the result message so tool
        # results that trail it are still delivered.
        async for message in client.receive_messages():
            event = from_sdk_message(message)
            if event is not None:
                yield event

    async def interrupt(self) -> None:
        if self._client is None or self._closed:
            return
        await self._client.interrupt()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            await self._client.disconnect()
            log.debug("Upstream client disconnected")


def claude_query_factory(config: UpstreamConfig | None = None) -> QueryFactory:
    """Return a factory opening a ClaudeQuery per turn.

    Without an explicit config, the config cascade is resolved once per
    session working directory so project-level settings apply; later turns
    in the same directory reuse it. The session's bound upstream id is
    passed as ``resume`` so successive turns continue the same upstream
    conversation.
    """
    by_cwd: dict[str, UpstreamConfig] = {}

    def upstream_for(cwd: str) -> UpstreamConfig:
        if config is not None:
            return config
        if cwd not in by_cwd:
            from acpbridge.config import load_config

            by_cwd[cwd] = load_config(session_root=cwd).upstream
            log.debug("Resolved upstream config for %s", cwd)
        return by_cwd[cwd]

    def factory(content: list[dict[str, Any]], session: Session) -> UpstreamQuery:
        upstream = upstream_for(session.cwd)
        options = build_options(upstream, session.cwd, session.upstream_session_id)
        return ClaudeQuery(options, content)

    return factory
