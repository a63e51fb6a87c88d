"""
Core Data Models for the chat intake pipeline

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: ParsedTransaction is transient and may carry an amount of
zero, which means "nothing found". TransactionRecord is what gets persisted
and refuses anything but a positive amount.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Intent(str, Enum):
    """What an inbound message is trying to do."""
    LINK = "link"
    GREETING = "greeting"
    QUESTION = "question"
    TRANSACTION = "transaction"


class TransactionSource(str, Enum):
    """Where a transaction was read from (also the stored message kind)."""
    TEXT = "text"
    IMAGE = "image"


class SyncStatus(str, Enum):
    """
    Companion app sync lifecycle.

    This pipeline only ever writes PENDING_SYNC. The companion sync
    endpoint flips rows to SYNCED.
    """
    PENDING_SYNC = "pending_sync"
    SYNCED = "synced"


class CategoryKind(str, Enum):
    """Whether a user-defined category applies to expenses or income."""
    EXPENSE = "expense"
    INCOME = "income"


class LinkStatus(str, Enum):
    """Result of verifying a link code."""
    LINKED = "linked"
    INVALID = "invalid"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"


# =============================================================================
# ACCOUNT LINKING
# =============================================================================

class LinkToken(BaseModel):
    """
    A one-time linking code issued by the companion app.

    Consumed at most once: used_at set means no further binding effects.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Opaque, unique code (stored lower-case, without the link_ prefix)"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Companion app account the code belongs to"
    )
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    used_at: Optional[datetime] = None
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )

    @field_validator('code')
    @classmethod
    def lower_case_code(cls, v: str) -> str:
        return v.lower()

    @field_validator('created_at', 'expires_at', 'used_at')
    @classmethod
    def aware_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @field_validator('default_currency')
    @classmethod
    def upper_case_currency(cls, v: str) -> str:
        return v.upper()

    def is_expired(self, now: datetime) -> bool:
        return ensure_aware(now) > self.expires_at

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


class LinkedIdentity(BaseModel):
    """A messaging address bound to a companion app account (one per owner)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    owner_id: str = Field(..., min_length=1, max_length=255)
    messaging_address: str = Field(..., min_length=1, max_length=255)
    linked_at: datetime = Field(default_factory=utc_now)
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator('linked_at')
    @classmethod
    def aware_linked_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @field_validator('currency')
    @classmethod
    def upper_case_currency(cls, v: str) -> str:
        return v.upper()


class LinkOutcome(BaseModel):
    """What verify_and_link decided."""

    status: LinkStatus
    owner_id: Optional[str] = None
    currency: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return self.status == LinkStatus.LINKED


# =============================================================================
# CATEGORIES
# =============================================================================

class UserCategory(BaseModel):
    """One entry of a user's synced category set."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    kind: CategoryKind
    is_custom: bool = False


# =============================================================================
# TRANSACTIONS
# =============================================================================

class ParsedTransaction(BaseModel):
    """
    A transaction candidate produced by a parser.

    CRITICAL: This is PROPOSED data. An amount of 0 means no transaction
    was found and it must never be persisted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount in `currency`; 0 when nothing was found"
    )
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="ISO 4217 code"
    )
    vendor: str = Field(default="Expense", max_length=255)
    note: str = Field(default="", max_length=1000)
    category: str = Field(default="Uncategorized", max_length=255)
    transaction_date: date
    source: TransactionSource = TransactionSource.TEXT

    @field_validator('currency')
    @classmethod
    def upper_case_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def has_amount(self) -> bool:
        return self.amount > 0


class TransactionRecord(BaseModel):
    """
    A transaction persisted for the companion app.

    Created once per successfully parsed inbound message and never
    deleted by this pipeline.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., min_length=1, max_length=255)

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field(..., min_length=3, max_length=3)
    vendor: str = Field(..., max_length=255)
    note: str = Field(default="", max_length=1000)
    category: str = Field(..., max_length=255)
    transaction_date: date
    source: TransactionSource

    message_kind: TransactionSource
    attachment_reference: Optional[str] = Field(
        default=None,
        description="Relay URL of the receipt image"
    )
    sync_status: SyncStatus = SyncStatus.PENDING_SYNC
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedTransaction,
        owner_id: str,
        category: str,
        attachment_reference: Optional[str] = None,
    ) -> "TransactionRecord":
        """Build the record to persist from a parsed candidate."""
        return cls(
            owner_id=owner_id,
            amount=parsed.amount,
            currency=parsed.currency,
            vendor=parsed.vendor,
            note=parsed.note,
            category=category,
            transaction_date=parsed.transaction_date,
            source=parsed.source,
            message_kind=parsed.source,
            attachment_reference=attachment_reference,
        )


# =============================================================================
# MESSAGING
# =============================================================================

class InboundMessage(BaseModel):
    """One message as delivered by the messaging relay."""
    model_config = ConfigDict(str_strip_whitespace=True)

    sender_address: str = Field(..., min_length=1)
    body_text: str = ""
    attachment_count: int = Field(default=0, ge=0)
    attachment_url: Optional[str] = None
    attachment_content_type: Optional[str] = None

    @property
    def has_attachment(self) -> bool:
        return self.attachment_count > 0 and bool(self.attachment_url)


class AssistantReply(BaseModel):
    """
    The pipeline's answer to one inbound message.

    `outcome` names the terminal branch that produced the reply.
    """

    text: str
    outcome: str
    intent: Optional[Intent] = None
    transaction: Optional[TransactionRecord] = None
