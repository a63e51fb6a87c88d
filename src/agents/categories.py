"""
Category Resolution

Picks the category a new transaction is filed under, from the user's own
synced category set when there is one.

DESIGN DECISION: The oracle may only CHOOSE from the list we give it. If
its answer is not a verbatim member of the user's expense categories it is
discarded, so a hallucinated category can never reach the companion app.

Resolution order for a non-empty category set:
1. Oracle pick (verbatim member of the expense names)
2. Keyword match restricted to the user's names
3. "Other Expenses" if the user has it
4. The user's first expense category
5. "Uncategorized" (only when the user has no expense categories)
"""

from typing import Optional
from uuid import UUID

from src.agents.oracle import CompletionOracle, OracleResponseError
from src.agents.resilience import ResilientCall
from src.models.transaction import CategoryKind, UserCategory
from src.parsing.fallback_parser import (
    OTHER_EXPENSES,
    UNCATEGORIZED,
    guess_category,
    match_category_keywords,
)


def expense_category_names(category_set: list[UserCategory]) -> list[str]:
    """Expense-kind names in their synced order, without duplicates."""
    names: list[str] = []
    for category in category_set:
        if category.kind == CategoryKind.EXPENSE and category.name not in names:
            names.append(category.name)
    return names


def resolve_by_keywords(vendor: str, note: str, names: list[str]) -> str:
    """Deterministic pick from `names` (steps 2-5)."""
    match = match_category_keywords(f"{vendor} {note}", allowed=names)
    if match:
        return match
    if OTHER_EXPENSES in names:
        return OTHER_EXPENSES
    if names:
        return names[0]
    return UNCATEGORIZED


class CategoryResolver:
    """
    Resolves a category with oracle-first, keyword-fallback semantics.
    """

    def __init__(
        self,
        oracle: Optional[CompletionOracle] = None,
        resilient_call: Optional[ResilientCall] = None,
    ):
        self._oracle = oracle
        self._call = resilient_call or ResilientCall("category")

    def build_prompt(self, vendor: str, note: str, names: list[str]) -> str:
        return f"""You are a transaction categorization assistant.
Given a vendor/item name and a note, choose exactly one category from this list:
{', '.join(names)}

Vendor/Item: {vendor}
Note: {note or '(none)'}

Respond with ONLY the category name, spelled exactly as in the list. No explanation."""

    async def _ask_oracle(self, vendor: str, note: str, names: list[str]) -> str:
        response = await self._oracle.complete(
            self.build_prompt(vendor, note, names),
            temperature=0.1,
            max_tokens=20,
        )
        answer = response.strip().strip("\"'`.").strip()
        if answer not in names:
            raise OracleResponseError(f"Category not in the user's list: {answer[:50]!r}")
        return answer

    async def resolve_category(
        self,
        vendor: str,
        note: str,
        category_set: list[UserCategory],
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Choose the category name for a transaction.

        With an empty category set the built-in keyword table is used.
        Otherwise the result is always one of the set's expense names,
        or "Uncategorized" if the set has none.
        """
        if not category_set:
            return guess_category(vendor, note)

        names = expense_category_names(category_set)
        if not names:
            return UNCATEGORIZED

        primary = None
        if self._oracle is not None:
            primary = lambda: self._ask_oracle(vendor, note, names)

        return await self._call.run(
            primary=primary,
            fallback=lambda: resolve_by_keywords(vendor, note, names),
            correlation_id=correlation_id,
        )
