"""
AI Transaction Extraction

Turns a chat message (text, or a receipt photo) into a ParsedTransaction
using the completion oracle.

DESIGN DECISION: The oracle only PROPOSES values. Every answer goes through
ExtractionPayload validation, and anything we cannot trust raises
ExtractionFailedError:
- no JSON object in the answer
- missing amount, or an amount that is not a positive number
- the attachment could not be fetched or is not an image

The caller decides what a failure means: the text path falls back to the
deterministic parser, the image path tells the user the receipt could not
be read (there is no OCR fallback).
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.agents.oracle import (
    CompletionOracle,
    ExtractionFailedError,
    OracleError,
    extract_json_object,
)
from src.models.transaction import InboundMessage, ParsedTransaction, TransactionSource
from src.parsing.currency import SYMBOL_TO_CODE, normalize_currency_code
from src.parsing.fallback_parser import (
    DEFAULT_CATEGORIES,
    GENERIC_LABEL,
    guess_category,
    normalize_amount,
)
from src.services.image.fetcher import AttachmentError, AttachmentFetcher


logger = structlog.get_logger("spenly.extraction")

TEXT_MAX_TOKENS = 200
IMAGE_MAX_TOKENS = 300
EXTRACTION_TEMPERATURE = 0.1

UNKNOWN_MERCHANT = "Unknown Merchant"
RECEIPT_NOTE = "Receipt"


class ExtractionPayload(BaseModel):
    """
    The JSON object we ask the oracle for.

    Only `amount` is mandatory. Unknown keys are ignored.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    amount: Decimal
    vendor: Optional[str] = None
    note: Optional[str] = None
    category: Optional[str] = None
    transaction_date: Optional[str] = Field(default=None, alias="date")
    currency: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        """Accept "1,500" or "$15.50" as well as plain numbers."""
        if isinstance(v, str):
            stripped = v.strip()
            for symbol in SYMBOL_TO_CODE:
                stripped = stripped.replace(symbol, "")
            normalized = normalize_amount(stripped.strip())
            if normalized is None:
                raise ValueError(f"Not a number: {v!r}")
            return normalized
        return v

    @field_validator("vendor", "note", "category", "currency", "transaction_date", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


def _parse_date(value: Optional[str], today: date) -> date:
    if not value:
        return today
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return today


def _canonical_category(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    folded = value.casefold()
    for name in DEFAULT_CATEGORIES:
        if name.casefold() == folded:
            return name
    return None


class AIExtractionClient:
    """
    Oracle-backed transaction extraction.

    RESPONSIBILITIES:
    - Build the extraction prompt (text or vision)
    - Fetch receipt images and send them inline
    - Validate the answer into a ParsedTransaction

    BOUNDARIES:
    - NEVER falls back by itself (the caller owns the fallback)
    - NEVER persists anything
    """

    def __init__(
        self,
        oracle: CompletionOracle,
        fetcher: Optional[AttachmentFetcher] = None,
    ):
        self._oracle = oracle
        self._fetcher = fetcher

    def build_text_prompt(self, text: str, default_currency: str, today: date) -> str:
        today_str = today.isoformat()
        categories = ", ".join(DEFAULT_CATEGORIES)
        return f"""You are a precise transaction parser for an expense tracking app.
Extract the transaction details from the user's message.

User message: "{text}"
User's default currency: {default_currency}
Today's date: {today_str}

Return ONLY a valid JSON object with these exact fields:
{{
  "amount": <number> (required, must be > 0),
  "vendor": "<string>" (merchant/store/vendor name),
  "note": "<string>" (description/details, can be empty),
  "category": "<string>" (exactly one of: {categories}),
  "date": "<YYYY-MM-DD>" (default to {today_str}),
  "currency": "<string>" (3-letter code; use {default_currency} if none is given)
}}

Rules:
- If the amount has a currency symbol ($, €, £, ₹), use that currency
- "today" = {today_str}, "yesterday" = one day earlier
- No explanation, no markdown, no code blocks

Example:
Input: "₹500 for groceries"
Output: {{"amount": 500, "vendor": "Grocery Store", "note": "groceries", "category": "Shopping", "date": "{today_str}", "currency": "INR"}}"""

    def build_image_prompt(self, default_currency: str, today: date) -> str:
        today_str = today.isoformat()
        categories = ", ".join(DEFAULT_CATEGORIES)
        return f"""You are a receipt reader for an expense tracking app.
Analyze this receipt image and extract the transaction details.

Return ONLY a valid JSON object with these exact fields:
{{
  "amount": <number> (TOTAL amount paid, not individual items, must be > 0),
  "vendor": "<string>" (store/merchant name),
  "note": "<string>" (key items purchased, e.g. "Pizza, Coke, Fries"),
  "category": "<string>" (exactly one of: {categories}),
  "date": "<YYYY-MM-DD>" (date on the receipt, {today_str} if not visible),
  "currency": "<string>" (3-letter code from symbols or text; {default_currency} if not visible)
}}

No explanation, no markdown, no code blocks.
If you cannot read the receipt clearly, set amount to 0."""

    async def extract(
        self,
        message: InboundMessage,
        mode: TransactionSource,
        default_currency: str,
        today: Optional[date] = None,
    ) -> ParsedTransaction:
        """
        Extract a transaction from a message.

        Args:
            message: The inbound message
            mode: TEXT reads body_text, IMAGE reads the attachment
            default_currency: The user's currency
            today: Reference date (defaults to date.today())

        Returns:
            ParsedTransaction with a positive amount

        Raises:
            ExtractionFailedError: On any failure
        """
        today = today or date.today()

        try:
            if mode == TransactionSource.IMAGE:
                response = await self._complete_image(message, default_currency, today)
            else:
                response = await self._oracle.complete(
                    self.build_text_prompt(message.body_text, default_currency, today),
                    temperature=EXTRACTION_TEMPERATURE,
                    max_tokens=TEXT_MAX_TOKENS,
                )
            data = extract_json_object(response)
        except ExtractionFailedError:
            raise
        except OracleError as e:
            raise ExtractionFailedError(f"Oracle failed: {e}") from e

        return self._to_parsed(data, mode, default_currency, today)

    async def _complete_image(
        self,
        message: InboundMessage,
        default_currency: str,
        today: date,
    ) -> str:
        if not message.attachment_url:
            raise ExtractionFailedError("Message has no attachment")
        if self._fetcher is None:
            raise ExtractionFailedError("No attachment fetcher configured")

        try:
            image = await self._fetcher.fetch(
                message.attachment_url,
                content_type=message.attachment_content_type,
            )
        except AttachmentError as e:
            raise ExtractionFailedError(str(e)) from e

        return await self._oracle.complete(
            self.build_image_prompt(default_currency, today),
            image=image,
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=IMAGE_MAX_TOKENS,
        )

    def _to_parsed(
        self,
        data: dict,
        mode: TransactionSource,
        default_currency: str,
        today: date,
    ) -> ParsedTransaction:
        try:
            payload = ExtractionPayload.model_validate(data)
        except ValidationError as e:
            raise ExtractionFailedError(f"Invalid extraction payload: {e.error_count()} error(s)") from e

        try:
            amount = payload.amount.quantize(Decimal("0.01"))
        except InvalidOperation as e:
            raise ExtractionFailedError(f"Invalid amount: {payload.amount}") from e
        if not amount.is_finite() or amount <= 0:
            raise ExtractionFailedError(f"Amount must be positive, got {payload.amount}")

        if mode == TransactionSource.IMAGE:
            vendor = payload.vendor or UNKNOWN_MERCHANT
            note = payload.note or RECEIPT_NOTE
        else:
            note = payload.note or ""
            vendor = payload.vendor or note or GENERIC_LABEL

        category = _canonical_category(payload.category) or guess_category(vendor, note)

        return ParsedTransaction(
            amount=amount,
            currency=normalize_currency_code(payload.currency, default_currency),
            vendor=vendor[:255],
            note=note[:1000],
            category=category,
            transaction_date=_parse_date(payload.transaction_date, today),
            source=mode,
        )
