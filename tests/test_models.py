"""
Tests for Spenly Chat Intake

Test strategy:
1. Unit tests for individual components (models, parsers, classifiers)
2. Integration tests for the pipeline (with fake oracle and in-memory store)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from src.models.transaction import (
    CategoryKind,
    InboundMessage,
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
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class TestLinkModels:
    """Tests for linking models."""

    def test_link_token_lower_cases_code(self):
        """Test that codes are stored lower-case."""
        token = LinkToken(code="  AB12 ", owner_id="o", expires_at=NOW)
        assert token.code == "ab12"

    def test_link_token_upper_cases_currency(self):
        """Test that the default currency is normalized."""
        token = LinkToken(code="x", owner_id="o", expires_at=NOW, default_currency="inr")
        assert token.default_currency == "INR"

    def test_link_token_naive_timestamps_are_utc(self):
        """Test that naive timestamps (as read from SQLite) are treated as UTC."""
        token = LinkToken(code="x", owner_id="o", expires_at=datetime(2026, 10, 19, 12, 0))
        assert token.expires_at == NOW

    def test_link_token_expiry(self):
        """Test is_expired against a reference time."""
        token = LinkToken(code="x", owner_id="o", expires_at=NOW)
        assert not token.is_expired(NOW)
        assert token.is_expired(NOW + timedelta(seconds=1))

    def test_link_token_is_used(self):
        """Test the is_used property."""
        token = LinkToken(code="x", owner_id="o", expires_at=NOW)
        assert not token.is_used
        assert token.model_copy(update={"used_at": NOW}).is_used

    def test_link_outcome_is_linked(self):
        """Test that only LINKED counts as linked."""
        assert LinkOutcome(status=LinkStatus.LINKED, owner_id="o").is_linked
        assert not LinkOutcome(status=LinkStatus.EXPIRED).is_linked

    def test_linked_identity_rejects_bad_currency(self):
        """Test that currencies must be 3 letters."""
        with pytest.raises(ValueError):
            LinkedIdentity(owner_id="o", messaging_address="+1", currency="DOLLARS")

    def test_ensure_aware_leaves_aware_values(self):
        """Test that aware datetimes are unchanged."""
        assert ensure_aware(NOW) is NOW
        assert ensure_aware(None) is None


class TestTransactionModels:
    """Tests for transaction-related Pydantic models."""

    def test_parsed_transaction_allows_zero(self):
        """Test that zero means 'nothing found' and is allowed."""
        parsed = ParsedTransaction(
            amount=Decimal("0"),
            currency="usd",
            transaction_date=date(2026, 10, 19),
        )
        assert parsed.currency == "USD"
        assert not parsed.has_amount
        assert parsed.vendor == "Expense"
        assert parsed.category == "Uncategorized"

    def test_parsed_transaction_rejects_negative(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            ParsedTransaction(
                amount=Decimal("-5"),
                currency="USD",
                transaction_date=date(2026, 10, 19),
            )

    def test_parsed_transaction_rejects_three_decimals(self):
        """Test that amounts must be quantized to cents."""
        with pytest.raises(ValueError):
            ParsedTransaction(
                amount=Decimal("1.005"),
                currency="USD",
                transaction_date=date(2026, 10, 19),
            )

    def test_record_from_parsed(self):
        """Test building a persisted record from a parsed candidate."""
        parsed = ParsedTransaction(
            amount=Decimal("15.00"),
            currency="USD",
            vendor="Pizza",
            note="with friends",
            category="Food & Dining",
            transaction_date=date(2026, 10, 19),
            source=TransactionSource.TEXT,
        )
        record = TransactionRecord.from_parsed(parsed, owner_id="owner-1", category="Meals")

        assert record.owner_id == "owner-1"
        assert record.category == "Meals"
        assert record.amount == Decimal("15.00")
        assert record.message_kind == TransactionSource.TEXT
        assert record.sync_status == SyncStatus.PENDING_SYNC
        assert record.attachment_reference is None
        assert record.created_at.tzinfo is not None
        assert len(record.id) == 36

    def test_record_rejects_zero_amount(self):
        """Test that a zero amount can never be persisted."""
        with pytest.raises(ValueError):
            TransactionRecord(
                owner_id="o",
                amount=Decimal("0"),
                currency="USD",
                vendor="x",
                category="y",
                transaction_date=date(2026, 10, 19),
                source=TransactionSource.TEXT,
                message_kind=TransactionSource.TEXT,
            )

    def test_user_category(self):
        """Test UserCategory creation from raw strings."""
        category = UserCategory(name=" Groceries ", kind="expense")
        assert category.name == "Groceries"
        assert category.kind == CategoryKind.EXPENSE
        assert not category.is_custom


class TestInboundMessage:
    """Tests for the relay message model."""

    def test_has_attachment_needs_url(self):
        """Test that a media count without URL is not an attachment."""
        assert not InboundMessage(sender_address="+1", attachment_count=1).has_attachment
        assert InboundMessage(
            sender_address="+1",
            attachment_count=1,
            attachment_url="https://api.twilio.com/media/1",
        ).has_attachment

    def test_sender_required(self):
        """Test that an empty sender is rejected."""
        with pytest.raises(ValueError):
            InboundMessage(sender_address="  ")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.TRANSACTION_SAVED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description="Test error",
            correlation_id=correlation_id,
        )
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "system_error"
        assert log_dict["severity"] == "error"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_message_received_truncates_body(self):
        """Test that message bodies are never logged in full."""
        event = AuditEventBuilder.message_received(
            sender_address="+15550001111",
            body_text="x" * 500,
            has_attachment=False,
            correlation_id=uuid4(),
        )
        assert len(event.details["body_preview"]) == 101
        assert event.entity_id == "+15550001111"

    def test_oracle_fallback_is_warning(self):
        """Test that oracle fallbacks are logged as warnings."""
        event = AuditEventBuilder.oracle_fallback(
            capability="intent",
            reason="timed out",
            correlation_id=None,
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details["capability"] == "intent"
        assert event.error_message == "timed out"

    def test_transaction_saved_builder(self):
        """Test AuditEventBuilder.transaction_saved."""
        event = AuditEventBuilder.transaction_saved(
            transaction_id="t-1",
            owner_id="owner-1",
            vendor="Pizza",
            amount="15.00",
            currency="USD",
            correlation_id=uuid4(),
        )
        assert event.entity_id == "t-1"
        assert "Pizza" in event.description
        assert event.details["currency"] == "USD"
