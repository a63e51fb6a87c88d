"""
Data Models Package

This package contains all Pydantic models used by the chat intake pipeline.
All data flowing through the system must conform to these schemas.
"""

from src.models.transaction import (
    AssistantReply,
    CategoryKind,
    InboundMessage,
    Intent,
    LinkedIdentity,
    LinkOutcome,
    LinkStatus,
    LinkToken,
    ParsedTransaction,
    SyncStatus,
    TransactionRecord,
    TransactionSource,
    UserCategory,
    ensure_aware,
    utc_now,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Pipeline models
    "AssistantReply",
    "CategoryKind",
    "InboundMessage",
    "Intent",
    "LinkedIdentity",
    "LinkOutcome",
    "LinkStatus",
    "LinkToken",
    "ParsedTransaction",
    "SyncStatus",
    "TransactionRecord",
    "TransactionSource",
    "UserCategory",
    "ensure_aware",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
