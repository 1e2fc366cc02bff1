"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable and command-line overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from acpbridge.config.paths import get_config_paths
from acpbridge.config.schema import (
    AuditConfig,
    Config,
    LoggingConfig,
    ToolsConfig,
    UpstreamConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("acpbridge.config")

# Global cached config
_cached_config: Config | None = None

# Overrides from the command line, applied above every other source
_cli_overrides: dict[str, Any] = {}

_KNOWN_KEYS = {"logging", "upstream", "audit", "tools"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Recognised variables:
        ACPBRIDGE_LOG        logging.file
        ACPBRIDGE_DEBUG      logging.debug (any non-empty value but "0")
        ACPBRIDGE_AUDIT_DIR  audit.dir (and enables auditing)
        ACPBRIDGE_MODEL      upstream.model
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("ACPBRIDGE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    debug = os.environ.get("ACPBRIDGE_DEBUG")
    if debug and debug != "0":
        overrides.setdefault("logging", {})["debug"] = True

    audit_dir = os.environ.get("ACPBRIDGE_AUDIT_DIR")
    if audit_dir:
        overrides["audit"] = {"enabled": True, "dir": audit_dir}

    model = os.environ.get("ACPBRIDGE_MODEL")
    if model:
        overrides["upstream"] = {"model": model}

    return overrides


def overlay(base: dict[str, Any], layer: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``layer`` applied on top.

    Mappings merge key by key, a ``None`` leaves the lower value in place,
    and anything else (lists included) replaces it. Inputs are not mutated.
    """
    merged = dict(base)
    for key, value in layer.items():
        if value is None:
            continue
        below = merged.get(key)
        if isinstance(below, dict) and isinstance(value, dict):
            value = overlay(below, value)
        merged[key] = value
    return merged


def merge_layers(layers: list[tuple[str, dict[str, Any]]]) -> dict[str, Any]:
    """Merge (source, data) layers lowest priority first.

    A known section that is not a mapping (``upstream: fast``) is dropped
    with a warning naming its source; the layers below keep that section.
    """
    merged: dict[str, Any] = {}
    for source, data in layers:
        usable: dict[str, Any] = {}
        for key, value in data.items():
            if key in _KNOWN_KEYS and value is not None and not isinstance(value, dict):
                _log.warning("Ignoring config section %r from %s: expected a mapping", key, source)
                continue
            usable[key] = value
        merged = overlay(merged, usable)
    return merged


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    log_data = data.get("logging") or {}
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=int(verbose) if verbose is not None else None,
        file=log_data.get("file"),
        debug=bool(log_data.get("debug", False)),
    )

    up_data = data.get("upstream") or {}
    max_turns = up_data.get("max_turns")
    upstream = UpstreamConfig(
        model=up_data.get("model"),
        permission_mode=up_data.get("permission_mode"),
        max_turns=int(max_turns) if max_turns is not None else None,
        allowed_tools=_str_list(up_data.get("allowed_tools")),
        disallowed_tools=_str_list(up_data.get("disallowed_tools")),
        system_prompt=up_data.get("system_prompt"),
        cli_path=up_data.get("cli_path"),
    )

    audit_data = data.get("audit") or {}
    audit = AuditConfig(
        enabled=bool(audit_data.get("enabled", False)),
        dir=audit_data.get("dir"),
    )

    tools_data = data.get("tools") or {}
    kinds_data = tools_data.get("kinds") or {}
    tools = ToolsConfig(
        kinds={
            str(name): str(kind)
            for name, kind in kinds_data.items()
            if isinstance(kind, str)
        }
        if isinstance(kinds_data, dict)
        else {},
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        logging=logging_config,
        upstream=upstream,
        audit=audit,
        tools=tools,
        extra=extra,
    )


def set_cli_overrides(overrides: dict[str, Any]) -> None:
    """Register command-line overrides and drop the cached config."""
    global _cli_overrides
    _cli_overrides = overrides
    reset_config()


def load_config(session_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Command-line overrides
    2. Environment variables
    3. Project config (<session_root>/.acpbridge/config.yaml)
    4. User config (~/.config/acpbridge/ or ~/.acpbridge/ or %APPDATA%)
    5. System config (/etc/acpbridge/ or %PROGRAMDATA%)

    Args:
        session_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object. Only the global config (no session_root) is cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and session_root is None:
        return _cached_config

    layers: list[tuple[str, dict[str, Any]]] = []

    for path in get_config_paths(session_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            layers.append((str(path), config_data))

    env_config = env_overrides()
    if env_config:
        layers.append(("environment", env_config))

    if _cli_overrides:
        layers.append(("command line", _cli_overrides))

    config = dict_to_config(merge_layers(layers))

    if session_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (used by tests and after override changes)."""
    global _cached_config
    _cached_config = None
