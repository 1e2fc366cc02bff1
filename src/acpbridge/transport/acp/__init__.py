"""ACP transport."""

from acpbridge.transport.acp.agent import BridgeAgent, create_agent

__all__ = ["BridgeAgent", "create_agent"]
