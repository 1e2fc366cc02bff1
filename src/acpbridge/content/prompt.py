"""Client prompt parts -> upstream user message content."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlparse
from urllib.request import url2pathname

from acp.schema import (
    AudioContentBlock,
    BlobResourceContents,
    EmbeddedResourceContentBlock,
    ImageContentBlock,
    ResourceContentBlock,
    TextContentBlock,
    TextResourceContents,
)

from acpbridge.errors import ClientFileReadFailure
from acpbridge.logging import get_logger

log = get_logger("session")

# async (session_id, path) -> file text
FileReader = Callable[[str, str], Awaitable[str]]


def uri_to_path(uri: str) -> str:
    """Convert a ``file://`` URI to a filesystem path; other URIs pass through."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    path = url2pathname(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        return f"//{parsed.netloc}{path}"
    return path


def _passthrough(block: Any) -> dict[str, Any]:
    if isinstance(block, dict):
        return block
    return block.model_dump(by_alias=True, exclude_none=True)


class PromptConverter:
    """Builds upstream content blocks from client prompt parts.

    Args:
        read_text_file: Reader used to inline resource links. None when the
            client does not advertise file-read support, in which case links
            pass through unchanged.
    """

    def __init__(self, read_text_file: FileReader | None = None) -> None:
        self._read_text_file = read_text_file

    def set_file_reader(self, read_text_file: FileReader | None) -> None:
        self._read_text_file = read_text_file

    async def to_upstream(self, session_id: str, blocks: list[Any]) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = []
        for block in blocks:
            converted = await self._convert(session_id, block)
            if converted is not None:
                content.append(converted)
        return content

    async def _convert(self, session_id: str, block: Any) -> dict[str, Any] | None:
        match block:
            case TextContentBlock(text=text):
                return {"type": "text", "text": text}
            case ImageContentBlock(data=data, mime_type=mime_type):
                return {
                    "type": "image",
                    "source": {"type": "base64", "media_type": mime_type, "data": data},
                }
            case ResourceContentBlock():
                return await self._inline_link(session_id, block)
            case EmbeddedResourceContentBlock(resource=TextResourceContents() as res):
                return {
                    "type": "document",
                    "source": {
                        "type": "text",
                        "media_type": res.mime_type or "text/plain",
                        "data": res.text,
                    },
                }
            case EmbeddedResourceContentBlock(resource=BlobResourceContents() as res):
                return {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": res.mime_type or "application/octet-stream",
                        "data": res.blob,
                    },
                }
            case AudioContentBlock():
                log.warning("Dropping audio prompt part for session %s", session_id)
                return None
            case _:
                return _passthrough(block)

    async def _inline_link(self, session_id: str, block: ResourceContentBlock) -> dict[str, Any]:
        if self._read_text_file is None:
            return _passthrough(block)

        path = uri_to_path(block.uri)
        try:
            text = await self._read_text_file(session_id, path)
        except Exception as e:
            failure = ClientFileReadFailure(path, e)
            log.warning("%s; passing link through", failure)
            return _passthrough(block)

        return {"type": "text", "text": f"File: {block.uri}\n```\n{text}\n```"}
