"""
Deterministic Transaction Parser

DESIGN DECISION: This parser has no external dependency and never fails.
It is used whenever the AI oracle is unavailable, slow, or returns
something we cannot trust. Its output may be poor ("Expense" / 0), but it
is always well-formed, and an amount of 0 means "nothing found".

Extraction steps, in order:
1. Currency: a symbol, otherwise the user's default
2. Amount: first number (optionally prefixed by a symbol)
3. Date: today / yesterday / tomorrow
4. Vendor and note from what is left ("X for Y" or first word + rest)
5. Category: keyword table scanned against vendor + note
"""

import re
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional

from src.models.transaction import ParsedTransaction, TransactionSource
from src.parsing.currency import (
    SYMBOL_TO_CODE,
    detect_currency,
    strip_leading_currency_word,
    strip_trailing_currency_word,
)


GENERIC_LABEL = "Expense"
UNCATEGORIZED = "Uncategorized"
OTHER_EXPENSES = "Other Expenses"

# Category -> substrings. Order matters: the first matching category wins.
DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "Food & Dining": [
        "pizza", "burger", "restaurant", "cafe", "coffee", "lunch", "dinner",
        "breakfast", "food", "eat", "meal", "snack", "drink", "beverage",
    ],
    "Transportation": [
        "cab", "taxi", "uber", "lyft", "bus", "train", "metro", "subway",
        "transport", "ride", "fuel", "gas", "parking",
    ],
    "Shopping": [
        "grocer", "grocery", "groceries", "supermarket", "pencil", "shopping",
        "store", "mall", "retail", "purchase", "buy",
    ],
    "Health & Fitness": [
        "vicks", "medicine", "pharmacy", "doctor", "hospital", "medical",
        "health", "fitness", "gym", "vitamin",
    ],
    "Bills & Utilities": [
        "bill", "utility", "electric", "water", "internet", "phone",
    ],
    "Entertainment": [
        "movie", "cinema", "game", "entertainment", "fun", "concert",
    ],
    "Education": [
        "book", "school", "education", "course", "tuition",
    ],
    "Personal Care": [
        "haircut", "salon", "beauty", "personal", "care",
    ],
    OTHER_EXPENSES: [],
}

# The built-in vocabulary used when a user has no synced categories
DEFAULT_CATEGORIES: list[str] = list(DEFAULT_CATEGORY_KEYWORDS)

_SYMBOLS = "".join(re.escape(s) for s in SYMBOL_TO_CODE)

# Optional symbol, then digits with optional . or , groups. Must not be glued
# to a preceding word or number.
_AMOUNT_PATTERN = re.compile(
    rf"(?<![A-Za-z0-9])(?P<symbol>[{_SYMBOLS}]\s*)?(?P<number>\d+(?:[.,]\d+)*)"
)

_DATE_OFFSETS: dict[str, int] = {
    "today": 0,
    "yesterday": -1,
    "tomorrow": 1,
}

_DATE_PATTERN = re.compile(r"\b(today|yesterday|tomorrow)\b", re.IGNORECASE)

_FOR_SPLIT_PATTERN = re.compile(r"^(?P<vendor>.+?)\s+for\s+(?P<note>.+)$", re.IGNORECASE)
_LEADING_FOR_PATTERN = re.compile(r"^for\s+(?P<note>.+)$", re.IGNORECASE)

_TWO_PLACES = Decimal("0.01")


def normalize_amount(raw: str) -> Optional[Decimal]:
    """
    Turn a matched number string into a Decimal.

    With more than one separator only the last is the decimal point
    (1,234.56 / 1.234,56 / 1.234.567 -> 1234.567). A single separator is
    the decimal point (15,50) unless exactly three digits follow it, which
    makes it a thousands separator (1,500).
    """
    groups = re.split(r"[.,]", raw)
    if len(groups) == 1:
        number = groups[0]
    elif len(groups) == 2 and len(groups[-1]) == 3:
        number = "".join(groups)
    else:
        number = "".join(groups[:-1]) + "." + groups[-1]

    try:
        return Decimal(number).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def match_category_keywords(
    text: str,
    allowed: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Keyword category guess.

    Without `allowed`, any category of the built-in table can be returned.
    With `allowed`, only those names are eligible: a name mentioned in the
    text wins, then the keyword table for names the table knows. The
    returned name is always spelled exactly as in `allowed`.
    """
    lowered = text.lower()

    if allowed is None:
        for category, keywords in DEFAULT_CATEGORY_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                return category
        return None

    names = list(allowed)
    by_folded = {name.casefold(): name for name in names}

    for name in names:
        if name.casefold() in lowered:
            return name

    for category, keywords in DEFAULT_CATEGORY_KEYWORDS.items():
        user_name = by_folded.get(category.casefold())
        if user_name is None:
            continue
        if any(keyword in lowered for keyword in keywords):
            return user_name

    return None


def guess_category(vendor: str, note: str) -> str:
    """Category from the built-in keyword table, or Uncategorized."""
    return match_category_keywords(f"{vendor} {note}") or UNCATEGORIZED


def _extract_date(text: str, today: date) -> tuple[date, str]:
    match = _DATE_PATTERN.search(text)
    if not match:
        return today, text
    offset = _DATE_OFFSETS[match.group(1).lower()]
    return today + timedelta(days=offset), _DATE_PATTERN.sub(" ", text)


def _clean(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    return text.strip(" ,.;:-")


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def _split_vendor_note(remaining: str) -> tuple[str, str]:
    if not remaining:
        return GENERIC_LABEL, GENERIC_LABEL

    leading_for = _LEADING_FOR_PATTERN.match(remaining)
    if leading_for:
        note = leading_for.group("note").strip()
        return _capitalize(note), note

    for_split = _FOR_SPLIT_PATTERN.match(remaining)
    if for_split:
        return (
            _capitalize(for_split.group("vendor").strip()),
            for_split.group("note").strip(),
        )

    parts = remaining.split(" ", 1)
    vendor = _capitalize(parts[0])
    note = parts[1].strip() if len(parts) > 1 else ""
    return vendor, note


def parse_fallback(
    text: str,
    default_currency: str,
    today: Optional[date] = None,
) -> ParsedTransaction:
    """
    Parse a free-form expense message without any external help.

    Args:
        text: The raw message body
        default_currency: The user's currency, kept unless the text has a symbol
        today: Reference date for relative words (defaults to date.today())

    Returns:
        ParsedTransaction with source=text. amount is 0 when no number
        was found.
    """
    today = today or date.today()
    remaining = text or ""

    currency = detect_currency(remaining, default_currency)

    amount = Decimal("0.00")
    amount_match = _AMOUNT_PATTERN.search(remaining)
    if amount_match:
        amount = normalize_amount(amount_match.group("number")) or Decimal("0.00")
        # A currency word next to the amount labels it; it is not description
        before = strip_trailing_currency_word(remaining[:amount_match.start()])
        after = strip_leading_currency_word(remaining[amount_match.end():])
        remaining = before + " " + after

    for symbol in SYMBOL_TO_CODE:
        remaining = remaining.replace(symbol, " ")

    transaction_date, remaining = _extract_date(remaining, today)

    vendor, note = _split_vendor_note(_clean(remaining))

    return ParsedTransaction(
        amount=amount,
        currency=currency,
        vendor=vendor[:255],
        note=note[:1000],
        category=guess_category(vendor, note),
        transaction_date=transaction_date,
        source=TransactionSource.TEXT,
    )
