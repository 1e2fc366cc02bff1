"""acpbridge: bridges ACP clients to an upstream Claude agent session."""

__version__ = "0.1.0"

# Public API
from acpbridge.config import Config, get_config, load_config
from acpbridge.errors import (
    BridgeError,
    ClientFileReadFailure,
    SessionExists,
    SessionNotFound,
    UnknownToolResult,
    UpstreamQueryFailure,
)

__all__ = [
    "__version__",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "BridgeError",
    "ClientFileReadFailure",
    "SessionExists",
    "SessionNotFound",
    "UnknownToolResult",
    "UpstreamQueryFailure",
]
