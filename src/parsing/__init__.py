"""Deterministic parsing package (no external dependencies)."""

from src.parsing.currency import (
    CODE_TO_SYMBOL,
    SYMBOL_TO_CODE,
    currency_symbol,
    detect_currency,
    normalize_currency_code,
)
from src.parsing.fallback_parser import (
    DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY_KEYWORDS,
    GENERIC_LABEL,
    OTHER_EXPENSES,
    UNCATEGORIZED,
    guess_category,
    match_category_keywords,
    normalize_amount,
    parse_fallback,
)

__all__ = [
    "CODE_TO_SYMBOL",
    "SYMBOL_TO_CODE",
    "currency_symbol",
    "detect_currency",
    "normalize_currency_code",
    "DEFAULT_CATEGORIES",
    "DEFAULT_CATEGORY_KEYWORDS",
    "GENERIC_LABEL",
    "OTHER_EXPENSES",
    "UNCATEGORIZED",
    "guess_category",
    "match_category_keywords",
    "normalize_amount",
    "parse_fallback",
]
