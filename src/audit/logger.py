"""
Audit Logger

DESIGN DECISION: Every significant action in the pipeline is logged.
This provides:
1. Traceability of each inbound message via its correlation ID
2. Visibility of oracle degradation (every fallback is recorded)
3. A record of every transaction written for the companion app

The audit logger:
- Is async so it can sit inside the message flow
- Never raises (a broken log sink must not lose a user's transaction)
- Never logs full message bodies, only a short preview
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Writes every event as one structured JSON log line. Events are kept in
    memory as well when `keep_history` is set, which the test suite uses to
    assert on what the pipeline decided.
    """

    def __init__(self, keep_history: bool = False):
        self._logger = structlog.get_logger("spenly.audit")
        self._keep_history = keep_history
        self._history: list[AuditEvent] = []

    @property
    def history(self) -> list[AuditEvent]:
        return list(self._history)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written. Never raises.
        """
        if self._keep_history:
            self._history.append(event)

        try:
            log_dict = event.to_log_dict()

            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

        return True

    async def log_message_received(
        self,
        sender_address: str,
        body_text: str,
        has_attachment: bool,
        correlation_id: UUID,
    ) -> None:
        """Log an inbound message (body truncated)."""
        await self.log(AuditEventBuilder.message_received(
            sender_address=sender_address,
            body_text=body_text,
            has_attachment=has_attachment,
            correlation_id=correlation_id,
        ))

    async def log_link_succeeded(
        self,
        owner_id: str,
        messaging_address: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.link_succeeded(
            owner_id=owner_id,
            messaging_address=messaging_address,
            correlation_id=correlation_id,
        ))

    async def log_link_rejected(
        self,
        messaging_address: str,
        status: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.link_rejected(
            messaging_address=messaging_address,
            status=status,
            correlation_id=correlation_id,
        ))

    async def log_not_linked(
        self,
        messaging_address: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.not_linked(
            messaging_address=messaging_address,
            correlation_id=correlation_id,
        ))

    async def log_intent(
        self,
        intent: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.intent_classified(
            intent=intent,
            correlation_id=correlation_id,
        ))

    async def log_oracle_fallback(
        self,
        capability: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log that a deterministic fallback replaced the oracle."""
        await self.log(AuditEventBuilder.oracle_fallback(
            capability=capability,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        source: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            source=source,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_no_amount(
        self,
        source: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.no_amount_detected(
            source=source,
            correlation_id=correlation_id,
        ))

    async def log_category_resolved(
        self,
        category: str,
        candidates: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.category_resolved(
            category=category,
            candidates=candidates,
            correlation_id=correlation_id,
        ))

    async def log_transaction_saved(
        self,
        transaction_id: str,
        owner_id: str,
        vendor: str,
        amount: str,
        currency: str,
        correlation_id: UUID,
    ) -> None:
        """Log a persisted transaction."""
        await self.log(AuditEventBuilder.transaction_saved(
            transaction_id=transaction_id,
            owner_id=owner_id,
            vendor=vendor,
            amount=amount,
            currency=currency,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        owner_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            owner_id=owner_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_reply_delivery_failed(
        self,
        messaging_address: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reply_delivery_failed(
            messaging_address=messaging_address,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    One is created per inbound message and passed through every stage.
    """
    return uuid4()
