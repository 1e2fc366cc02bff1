"""Shared test utilities for acpbridge tests."""

from __future__ import annotations

import asyncio
from typing import Any

from acp.schema import TextContentBlock

from acpbridge.upstream.events import (
    AssistantEvent,
    ResultEvent,
    SystemEvent,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UpstreamEvent,
    UserEvent,
)


class FakeQuery:
    """Scripted upstream query.

    Events put on the queue are yielded in order. ``None`` ends the stream;
    an exception instance is raised from the stream.
    """

    def __init__(self, events: list[Any] | None = None, *, end: bool = False) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        for event in events or []:
            self.queue.put_nowait(event)
        if end:
            self.queue.put_nowait(None)
        self.content: list[dict[str, Any]] | None = None
        self.session: Any = None
        self.interrupted = False
        self.closed = False

    def push(self, *events: Any) -> None:
        for event in events:
            self.queue.put_nowait(event)

    def finish(self) -> None:
        self.queue.put_nowait(None)

    async def events(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def interrupt(self) -> None:
        self.interrupted = True

    async def close(self) -> None:
        self.closed = True


class FakeQueryFactory:
    """Hands out prepared FakeQuery objects, one per turn."""

    def __init__(self, *queries: FakeQuery) -> None:
        self.queries = list(queries)
        self.opened: list[FakeQuery] = []
        self.resume_ids: list[str | None] = []

    def __call__(self, content: list[dict[str, Any]], session: Any) -> FakeQuery:
        query = self.queries.pop(0) if self.queries else FakeQuery()
        query.content = content
        query.session = session
        self.resume_ids.append(session.upstream_session_id)
        self.opened.append(query)
        return query


class UpdateRecorder:
    """Records (session_id, update) pairs sent to the client."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Any]] = []

    async def __call__(self, session_id: str, update: Any) -> None:
        self.sent.append((session_id, update))

    @property
    def kinds(self) -> list[str]:
        return [update.session_update for _, update in self.sent]

    def of_kind(self, kind: str) -> list[Any]:
        return [update for _, update in self.sent if update.session_update == kind]


def text_prompt(text: str = "hello") -> list[Any]:
    return [TextContentBlock(type="text", text=text)]


def init_event(upstream_id: str = "up-1") -> SystemEvent:
    return SystemEvent(subtype="init", session_id=upstream_id, data={"session_id": upstream_id})


def assistant_text(text: str) -> AssistantEvent:
    return AssistantEvent(content=(TextBlock(text=text),))


def tool_use(tool_id: str, name: str, **tool_input: Any) -> AssistantEvent:
    return AssistantEvent(content=(ToolUseBlock(id=tool_id, name=name, input=tool_input),))


def tool_result(tool_id: str, content: Any = "ok", is_error: bool = False) -> UserEvent:
    return UserEvent(
        content=(ToolResultBlock(tool_use_id=tool_id, content=content, is_error=is_error),)
    )


def result(subtype: str = "success", is_error: bool = False) -> ResultEvent:
    return ResultEvent(subtype=subtype, is_error=is_error)


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


__all__ = [
    "FakeQuery",
    "FakeQueryFactory",
    "UpdateRecorder",
    "UpstreamEvent",
    "assistant_text",
    "init_event",
    "result",
    "settle",
    "text_prompt",
    "tool_result",
    "tool_use",
]
