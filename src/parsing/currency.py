"""
Currency detection and formatting.

DESIGN DECISION: This is the single source of truth for currency handling.
The fallback parser, the AI extraction prompt/validation and the reply
formatter all use these tables, so a symbol can never map to two different
codes depending on which path handled the message.

Only a symbol ($, €, £, ₹) sets the currency of a free-form message;
without one the user's default currency is kept. Words and ISO codes
("rupees", "eur") are recognised in two narrower places: the oracle's
reported currency, and the word next to an amount, which is dropped from
the description ("500 rupees" -> "500") without changing the currency.
"""

import re
from typing import Optional

# Symbol -> ISO 4217 code
SYMBOL_TO_CODE: dict[str, str] = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₹": "INR",
}

CODE_TO_SYMBOL: dict[str, str] = {code: symbol for symbol, code in SYMBOL_TO_CODE.items()}

# Lower-case word or code -> ISO 4217 code
WORD_TO_CODE: dict[str, str] = {
    "usd": "USD",
    "dollar": "USD",
    "dollars": "USD",
    "eur": "EUR",
    "euro": "EUR",
    "euros": "EUR",
    "gbp": "GBP",
    "pound": "GBP",
    "pounds": "GBP",
    "inr": "INR",
    "rs": "INR",
    "rupee": "INR",
    "rupees": "INR",
}

_WORDS = "|".join(sorted(WORD_TO_CODE, key=len, reverse=True))

_LEADING_WORD_PATTERN = re.compile(rf"^\s*(?:{_WORDS})\.?(?![a-z])", re.IGNORECASE)
_TRAILING_WORD_PATTERN = re.compile(rf"(?<![a-z])(?:{_WORDS})\.?\s*$", re.IGNORECASE)

_ISO_CODE_PATTERN = re.compile(r"^[A-Za-z]{3}$")


def detect_currency(text: str, default_currency: str) -> str:
    """
    Return the currency a message is written in.

    The first known symbol decides; without one the default is
    returned unchanged (upper-cased).
    """
    for symbol, code in SYMBOL_TO_CODE.items():
        if symbol in text:
            return code
    return default_currency.upper()


def strip_leading_currency_word(text: str) -> str:
    """Drop a currency word at the start of `text` ("rupees lunch" -> " lunch")."""
    return _LEADING_WORD_PATTERN.sub("", text, count=1)


def strip_trailing_currency_word(text: str) -> str:
    """Drop a currency word at the end of `text` ("lunch Rs." -> "lunch ")."""
    return _TRAILING_WORD_PATTERN.sub("", text, count=1)


def normalize_currency_code(value: Optional[str], default_currency: str) -> str:
    """
    Coerce a currency reported by the oracle to a 3-letter code.

    Accepts ISO codes, known symbols and words. Anything else
    becomes the default.
    """
    if not value:
        return default_currency.upper()

    candidate = str(value).strip()
    if candidate in SYMBOL_TO_CODE:
        return SYMBOL_TO_CODE[candidate]
    if candidate.lower() in WORD_TO_CODE:
        return WORD_TO_CODE[candidate.lower()]
    if _ISO_CODE_PATTERN.match(candidate):
        return candidate.upper()
    return default_currency.upper()


def currency_symbol(code: str) -> str:
    """Symbol for display, or the code followed by a space."""
    code = code.upper()
    return CODE_TO_SYMBOL.get(code, f"{code} ")
