"""Configuration schema dataclasses for acpbridge.

Defines the structure of configuration at all levels (system, user, project).
All fields are optional to support partial configs that merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path
    debug: bool = False  # Mirror logs to stderr even when it is not a console


@dataclass
class UpstreamConfig:
    """Options forwarded to the Claude agent session for every turn.

    Example config.yaml:
        upstream:
          model: claude-sonnet-4-5
          permission_mode: acceptEdits
          max_turns: 40
          allowed_tools: ["Read", "Grep", "Glob"]
    """

    model: str | None = None
    permission_mode: str | None = None  # default, acceptEdits, plan, bypassPermissions
    max_turns: int | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    system_prompt: str | None = None
    cli_path: str | None = None  # Explicit path to the claude CLI


@dataclass
class AuditConfig:
    """Per-session audit record files.

    When enabled, each session appends JSON lines to <dir>/<session-id>.jsonl.
    """

    enabled: bool = False
    dir: str | None = None


@dataclass
class ToolsConfig:
    """Tool reporting configuration.

    Example config.yaml:
        tools:
          kinds:
            mcp__github__search: search
    """

    kinds: dict[str, str] = field(default_factory=dict)  # tool name -> ACP kind


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
