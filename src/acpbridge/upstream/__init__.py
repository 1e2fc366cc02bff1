"""Upstream conversational session: typed events and per-turn queries."""

from acpbridge.upstream.events import (
    AssistantEvent,
    DisplayBlock,
    RedactedThinkingBlock,
    ResultEvent,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UpstreamBlock,
    UpstreamEvent,
    UserEvent,
    from_sdk_message,
    parse_block,
)
from acpbridge.upstream.query import (
    ClaudeQuery,
    QueryFactory,
    UpstreamQuery,
    build_options,
    claude_query_factory,
)

__all__ = [
    "AssistantEvent",
    "ClaudeQuery",
    "DisplayBlock",
    "QueryFactory",
    "RedactedThinkingBlock",
    "ResultEvent",
    "SystemEvent",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "UpstreamBlock",
    "UpstreamEvent",
    "UpstreamQuery",
    "UserEvent",
    "build_options",
    "claude_query_factory",
    "from_sdk_message",
    "parse_block",
]
