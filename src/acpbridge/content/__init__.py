"""Content conversion in both directions."""

from acpbridge.content.blocks import display_text, to_client_chunk
from acpbridge.content.prompt import FileReader, PromptConverter, uri_to_path

__all__ = [
    "FileReader",
    "PromptConverter",
    "display_text",
    "to_client_chunk",
    "uri_to_path",
]
