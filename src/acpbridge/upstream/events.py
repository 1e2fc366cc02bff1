"""Typed upstream events and content blocks.

The upstream session stream is normalised into a closed set of frozen
dataclasses so the rest of the bridge can ``match`` over them exhaustively:

    UpstreamEvent = SystemEvent | AssistantEvent | UserEvent | ResultEvent
    UpstreamBlock = TextBlock | ThinkingBlock | RedactedThinkingBlock
                  | ToolUseBlock | ToolResultBlock | DisplayBlock

``from_sdk_message`` accepts ``claude_agent_sdk`` message objects;
``parse_block`` accepts raw API-shaped content dicts, which is how the SDK
hands over block types it has no class for.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    UserMessage,
)
from claude_agent_sdk import TextBlock as SDKTextBlock
from claude_agent_sdk import ThinkingBlock as SDKThinkingBlock
from claude_agent_sdk import ToolResultBlock as SDKToolResultBlock
from claude_agent_sdk import ToolUseBlock as SDKToolUseBlock

from acpbridge.logging import get_logger

log = get_logger("upstream")

DisplayKind = Literal["document", "image", "search_result"]


# -----------------------------------------------------------------------------
# Content blocks
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ThinkingBlock:
    thinking: str


@dataclass(frozen=True, slots=True)
class RedactedThinkingBlock:
    data: str = ""


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    """A tool invocation requested by the assistant.

    ``server`` marks tools executed by the API itself (e.g. web search).
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    server: bool = False


@dataclass(frozen=True, slots=True)
class ToolResultBlock:
    """Outcome of a tool invocation, matched to its ToolUseBlock by id."""

    tool_use_id: str
    content: str | list[dict[str, Any]] | dict[str, Any] | None = None
    is_error: bool = False
    web_search: bool = False


@dataclass(frozen=True, slots=True)
class DisplayBlock:
    """Document, image or search-result content shown to the user as text."""

    kind: DisplayKind
    source: dict[str, Any] = field(default_factory=dict)


UpstreamBlock: TypeAlias = (
    TextBlock
    | ThinkingBlock
    | RedactedThinkingBlock
    | ToolUseBlock
    | ToolResultBlock
    | DisplayBlock
)


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SystemEvent:
    subtype: str
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_init(self) -> bool:
        return self.subtype == "init"


@dataclass(frozen=True, slots=True)
class AssistantEvent:
    content: tuple[UpstreamBlock, ...] = ()
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class UserEvent:
    content: tuple[UpstreamBlock, ...] = ()
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class ResultEvent:
    """Terminal event of one upstream response."""

    subtype: str = "success"
    is_error: bool = False
    session_id: str | None = None
    result: str | None = None
    num_turns: int = 0
    duration_ms: int = 0
    total_cost_usd: float | None = None


UpstreamEvent: TypeAlias = SystemEvent | AssistantEvent | UserEvent | ResultEvent


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def _web_search_failed(content: Any) -> bool:
    return isinstance(content, dict) and content.get("type") == "web_search_tool_result_error"


def parse_block(raw: dict[str, Any]) -> UpstreamBlock | None:
    """Parse one API-shaped content block dict.

    Returns None (and logs) for block types the bridge does not know.
    """
    block_type = raw.get("type")
    match block_type:
        case "text":
            return TextBlock(text=raw.get("text", ""))
        case "thinking":
            return ThinkingBlock(thinking=raw.get("thinking", ""))
        case "redacted_thinking":
            return RedactedThinkingBlock(data=raw.get("data", ""))
        case "tool_use" | "server_tool_use":
            return ToolUseBlock(
                id=raw.get("id", ""),
                name=raw.get("name", ""),
                input=raw.get("input") or {},
                server=block_type == "server_tool_use",
            )
        case "tool_result":
            return ToolResultBlock(
                tool_use_id=raw.get("tool_use_id", ""),
                content=raw.get("content"),
                is_error=bool(raw.get("is_error")),
            )
        case "web_search_tool_result":
            content = raw.get("content")
            return ToolResultBlock(
                tool_use_id=raw.get("tool_use_id", ""),
                content=content,
                is_error=_web_search_failed(content),
                web_search=True,
            )
        case "document" | "image" | "search_result":
            return DisplayBlock(kind=block_type, source=raw)
        case _:
            log.debug("Skipping unknown upstream block type: %s", block_type)
            return None


def _convert_block(block: Any) -> UpstreamBlock | None:
    """Convert an SDK block object (or raw dict) to a bridge block."""
    if isinstance(block, SDKTextBlock):
        return TextBlock(text=block.text)
    if isinstance(block, SDKThinkingBlock):
        return ThinkingBlock(thinking=block.thinking)
    if isinstance(block, SDKToolUseBlock):
        return ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
    if isinstance(block, SDKToolResultBlock):
        return ToolResultBlock(
            tool_use_id=block.tool_use_id,
            content=block.content,
            is_error=bool(block.is_error),
        )
    if isinstance(block, dict):
        return parse_block(block)
    log.debug("Skipping unsupported upstream block object: %r", type(block).__name__)
    return None


def _convert_content(content: Any) -> tuple[UpstreamBlock, ...]:
    if isinstance(content, str):
        return (TextBlock(text=content),) if content else ()
    blocks = (_convert_block(b) for b in content or ())
    return tuple(b for b in blocks if b is not None)


def from_sdk_message(message: Any) -> UpstreamEvent | None:
    """Normalise a ``claude_agent_sdk`` message into an UpstreamEvent.

    Messages that carry no client-relevant state (partial stream events and
    anything unrecognised) return None.
    """
    if isinstance(message, SystemMessage):
        data = dict(message.data or {})
        return SystemEvent(
            subtype=message.subtype,
            session_id=data.get("session_id"),
            data=data,
        )
    if isinstance(message, AssistantMessage):
        return AssistantEvent(content=_convert_content(message.content))
    if isinstance(message, UserMessage):
        return UserEvent(content=_convert_content(message.content))
    if isinstance(message, ResultMessage):
        return ResultEvent(
            subtype=message.subtype,
            is_error=bool(message.is_error),
            session_id=message.session_id,
            result=message.result,
            num_turns=message.num_turns,
            duration_ms=message.duration_ms,
            total_cost_usd=message.total_cost_usd,
        )
    return None
