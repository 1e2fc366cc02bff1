"""Configuration management for acpbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/acpbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/acpbridge/, ~/.acpbridge/ or %APPDATA%)
- Project-level config (<cwd>/.acpbridge/)
- Environment variable and command-line overrides (highest priority)

Example usage:
    from acpbridge.config import load_config, get_config

    # Load with project-specific config
    config = load_config(session_root="/path/to/project")
    print(config.upstream.model)

    # Get cached global config
    config = get_config()
"""

from acpbridge.config.loader import (
    get_config,
    load_config,
    reset_config,
    set_cli_overrides,
)
from acpbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from acpbridge.config.schema import (
    AuditConfig,
    Config,
    LoggingConfig,
    ToolsConfig,
    UpstreamConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "set_cli_overrides",
    # Schema types
    "AuditConfig",
    "LoggingConfig",
    "ToolsConfig",
    "UpstreamConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
