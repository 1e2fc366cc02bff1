"""Conversation state: sessions, upstream id mapping and audit records."""

from acpbridge.session.audit import AuditLog, AuditSink
from acpbridge.session.registry import SessionRegistry
from acpbridge.session.store import (
    CancellationToken,
    PendingToolUse,
    Session,
    SessionStore,
    ToolOutcome,
)

__all__ = [
    "AuditLog",
    "AuditSink",
    "CancellationToken",
    "PendingToolUse",
    "Session",
    "SessionRegistry",
    "SessionStore",
    "ToolOutcome",
]
