"""Upstream content blocks -> client session updates."""

from __future__ import annotations

from typing import Any

from acp import helpers

from acpbridge.upstream.events import (
    DisplayBlock,
    RedactedThinkingBlock,
    TextBlock,
    ThinkingBlock,
)

REDACTED_THINKING_TEXT = "[redacted thinking]"

ChunkBlock = TextBlock | ThinkingBlock | RedactedThinkingBlock | DisplayBlock


def _document_text(source: dict[str, Any]) -> str:
    inner = source.get("source") or {}
    title = source.get("title")
    if inner.get("type") == "text" and isinstance(inner.get("data"), str):
        return f"{title}\n{inner['data']}" if title else inner["data"]
    if inner.get("type") == "content":
        parts = [p.get("text", "") for p in inner.get("content") or [] if isinstance(p, dict)]
        return "\n".join(parts)
    label = title or inner.get("media_type") or "document"
    return f"[document: {label}]"


def _search_result_text(source: dict[str, Any]) -> str:
    lines = []
    if source.get("title"):
        lines.append(str(source["title"]))
    if source.get("source"):
        lines.append(str(source["source"]))
    for part in source.get("content") or []:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            lines.append(part["text"])
    return "\n".join(lines)


def display_text(block: DisplayBlock) -> str:
    """Render a document, image or search result as plain text."""
    match block.kind:
        case "document":
            return _document_text(block.source)
        case "image":
            inner = block.source.get("source") or {}
            return f"[image: {inner.get('media_type') or inner.get('url') or 'image'}]"
        case "search_result":
            return _search_result_text(block.source)
        case _:
            return f"[{block.kind}]"


def to_client_chunk(block: ChunkBlock) -> Any:
    """Map one non-tool block to an agent message or thought chunk."""
    match block:
        case TextBlock(text=text):
            return helpers.update_agent_message(helpers.text_block(text))
        case ThinkingBlock(thinking=thinking):
            return helpers.update_agent_thought(helpers.text_block(thinking))
        case RedactedThinkingBlock():
            return helpers.update_agent_thought(helpers.text_block(REDACTED_THINKING_TEXT))
        case DisplayBlock():
            return helpers.update_agent_message(helpers.text_block(display_text(block)))
