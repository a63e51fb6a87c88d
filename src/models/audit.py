"""
Audit Models for the chat intake pipeline

Every significant decision the pipeline takes for a message is logged:
link verification, intent, which parser produced the transaction, whether
the oracle was bypassed, and what was persisted.

DESIGN DECISION: Audit events are append-only structured log entries,
grouped per inbound message by a correlation ID.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every stage of the message pipeline has its own event type.
    """
    # Intake
    MESSAGE_RECEIVED = "message_received"

    # Linking
    LINK_SUCCEEDED = "link_succeeded"
    LINK_REJECTED = "link_rejected"
    NOT_LINKED = "not_linked"

    # Classification / parsing
    INTENT_CLASSIFIED = "intent_classified"
    ORACLE_FALLBACK = "oracle_fallback"
    EXTRACTION_FAILED = "extraction_failed"
    NO_AMOUNT_DETECTED = "no_amount_detected"
    CATEGORY_RESOLVED = "category_resolved"

    # Persistence
    TRANSACTION_SAVED = "transaction_saved"
    SAVE_FAILED = "save_failed"

    # Delivery
    REPLY_DELIVERY_FAILED = "reply_delivery_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'message', 'link_token', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events for one inbound message
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one inbound message"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.message_received(sender, body, False, cid)
        event = AuditEventBuilder.transaction_saved(record_id, ..., cid)
    """

    @staticmethod
    def message_received(
        sender_address: str,
        body_text: str,
        has_attachment: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_RECEIVED,
            entity_type="message",
            entity_id=sender_address,
            correlation_id=correlation_id,
            description=f"Message received from {sender_address}",
            details={
                "body_preview": _preview(body_text),
                "has_attachment": has_attachment,
            },
        )

    @staticmethod
    def link_succeeded(
        owner_id: str,
        messaging_address: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINK_SUCCEEDED,
            entity_type="linked_identity",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Account linked to {messaging_address}",
            details={
                "messaging_address": messaging_address,
            },
        )

    @staticmethod
    def link_rejected(
        messaging_address: str,
        status: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINK_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="link_token",
            correlation_id=correlation_id,
            description=f"Link code rejected: {status}",
            details={
                "messaging_address": messaging_address,
                "status": status,
            },
        )

    @staticmethod
    def not_linked(
        messaging_address: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOT_LINKED,
            entity_type="message",
            entity_id=messaging_address,
            correlation_id=correlation_id,
            description="Message from an unlinked address",
        )

    @staticmethod
    def intent_classified(
        intent: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_CLASSIFIED,
            entity_type="message",
            correlation_id=correlation_id,
            description=f"Intent classified as {intent}",
            details={"intent": intent},
        )

    @staticmethod
    def oracle_fallback(
        capability: str,
        reason: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORACLE_FALLBACK,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Oracle bypassed for {capability}",
            details={"capability": capability},
            error_message=reason,
        )

    @staticmethod
    def extraction_failed(
        source: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="message",
            correlation_id=correlation_id,
            description=f"Could not extract a transaction from {source}",
            details={"source": source},
            error_message=reason,
        )

    @staticmethod
    def no_amount_detected(
        source: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NO_AMOUNT_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="message",
            correlation_id=correlation_id,
            description="No positive amount found",
            details={"source": source},
        )

    @staticmethod
    def category_resolved(
        category: str,
        candidates: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_RESOLVED,
            entity_type="message",
            correlation_id=correlation_id,
            description=f"Category resolved: {category}",
            details={
                "category": category,
                "candidate_count": candidates,
            },
        )

    @staticmethod
    def transaction_saved(
        transaction_id: str,
        owner_id: str,
        vendor: str,
        amount: str,
        currency: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction saved: {vendor} - {amount} {currency}",
            details={
                "owner_id": owner_id,
                "vendor": vendor,
                "amount": amount,
                "currency": currency,
            },
        )

    @staticmethod
    def save_failed(
        owner_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            correlation_id=correlation_id,
            description="Transaction could not be persisted",
            details={"owner_id": owner_id},
            error_message=error_message,
        )

    @staticmethod
    def reply_delivery_failed(
        messaging_address: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLY_DELIVERY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="message",
            entity_id=messaging_address,
            correlation_id=correlation_id,
            description=f"Reply to {messaging_address} was not delivered",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
