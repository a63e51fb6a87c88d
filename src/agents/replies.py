"""
User-facing Replies

Every chat message gets exactly one reply. This module holds all the
texts, plus the conversational responder for greetings and questions.

DESIGN DECISION: Conversational replies are oracle-authored with a static
fallback. Everything with a fixed meaning (link results, errors,
confirmations) is static text: the user must be able to rely on "✅" meaning
the transaction really was saved.
"""

from typing import Optional
from uuid import UUID

from src.agents.oracle import CompletionOracle, OracleResponseError
from src.agents.resilience import ResilientCall
from src.models.transaction import (
    Intent,
    LinkStatus,
    TransactionRecord,
    TransactionSource,
)
from src.parsing.currency import currency_symbol


MAX_CONVERSATION_LENGTH = 300

# Link flow
LINK_SUCCESS = (
    "✅ Account linked! I'm Spenly AI. You can now send me your expenses. "
    "Try sending: 'Lunch $15' or a photo of your receipt."
)
LINK_REJECTED: dict[LinkStatus, str] = {
    LinkStatus.INVALID: (
        "❌ Invalid linking code. Please generate a new code in the Spenly app "
        "(Settings → Connect WhatsApp Bot)."
    ),
    LinkStatus.EXPIRED: (
        "❌ This linking code has expired. Please generate a new one in the "
        "Spenly app (Settings → Connect WhatsApp Bot)."
    ),
    LinkStatus.ALREADY_USED: (
        "❌ This linking code has already been used. If you need to link again, "
        "generate a new code in the Spenly app."
    ),
}
LINK_FAILED = "❌ An error occurred while linking your account. Please try again."

NOT_LINKED = (
    "Welcome to Spenly AI! To get started, please link your account. "
    "Go to Spenly app → Settings → Connect WhatsApp Bot to get your unique linking code."
)

# Transaction flow
NO_AMOUNT = (
    "❌ I couldn't find an amount in your message. "
    "Please send something like 'Pizza $15' or 'Lunch 500 rupees'."
)
RECEIPT_UNREADABLE = (
    "❌ I couldn't extract transaction details from the receipt. Please try sending "
    "it again or add the transaction manually as text."
)
SAVE_FAILED = "❌ Error saving transaction. Please try again."
GENERIC_ERROR = "❌ Sorry, something went wrong on our side. Please try again in a moment."

# Conversation fallbacks
GREETING_FALLBACK = "👋 Hi! I'm Spenly AI. Send me your expenses like 'Pizza $15' or send a receipt photo!"
QUESTION_FALLBACK = (
    "I'm Spenly AI, your expense tracking assistant. Send me transactions like "
    "'Lunch $15' or a photo of a receipt and I'll add them to your Spenly app."
)


def link_reply(status: LinkStatus) -> str:
    if status == LinkStatus.LINKED:
        return LINK_SUCCESS
    return LINK_REJECTED[status]


def format_amount(amount, currency: str) -> str:
    return f"{currency_symbol(currency)}{amount:.2f}"


def format_confirmation(record: TransactionRecord) -> str:
    """
    Confirmation sent after a transaction was saved.

    ✅ Transaction added:
    Pizza
    Food & Dining
    $15.00
    19 Oct 2026
    Note: with friends
    """
    if record.message_kind == TransactionSource.IMAGE:
        header, note_label = "✅ Receipt processed:", "Items"
    else:
        header, note_label = "✅ Transaction added:", "Note"

    lines = [
        header,
        record.vendor,
        record.category,
        format_amount(record.amount, record.currency),
        record.transaction_date.strftime("%d %b %Y"),
    ]
    if record.note:
        lines.append(f"{note_label}: {record.note}")
    return "\n".join(lines)


def static_reply(intent: Intent) -> str:
    if intent == Intent.GREETING:
        return GREETING_FALLBACK
    return QUESTION_FALLBACK


class ConversationResponder:
    """
    Writes replies to greetings and questions from linked users.

    The oracle gets a short product description; its answer is trimmed to
    MAX_CONVERSATION_LENGTH characters.
    """

    def __init__(
        self,
        oracle: Optional[CompletionOracle] = None,
        resilient_call: Optional[ResilientCall] = None,
    ):
        self._oracle = oracle
        self._call = resilient_call or ResilientCall("conversation")

    def build_prompt(self, message_text: str, intent: Intent) -> str:
        return f"""You are Spenly AI, a friendly WhatsApp bot for expense tracking.
The user is linked to their Spenly account. They can add expenses by sending
a message like "Lunch $15" or a photo of a receipt, and the expenses show up
in the Spenly app.

User message: "{message_text}"
Intent: {intent.value}

Write a helpful, concise reply (max 200 characters). Be friendly and natural.
Do not invent features, balances or amounts."""

    async def _ask_oracle(self, message_text: str, intent: Intent) -> str:
        response = await self._oracle.complete(
            self.build_prompt(message_text, intent),
            temperature=0.7,
            max_tokens=150,
        )
        text = response.strip()
        if not text:
            raise OracleResponseError("Empty conversational reply")
        if len(text) > MAX_CONVERSATION_LENGTH:
            text = text[:MAX_CONVERSATION_LENGTH - 1].rstrip() + "…"
        return text

    async def respond(
        self,
        message_text: str,
        intent: Intent,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        primary = None
        if self._oracle is not None:
            primary = lambda: self._ask_oracle(message_text, intent)

        return await self._call.run(
            primary=primary,
            fallback=lambda: static_reply(intent),
            correlation_id=correlation_id,
        )
