"""
Intent Classification

Decides what an inbound text message is: a link code, a greeting, a
question, or a transaction.

DESIGN DECISION: Two implementations of the same capability.
- OracleIntentClassifier asks the completion service for one word
- HeuristicIntentClassifier uses fixed rules and never fails
IntentClassifier composes them through ResilientCall. The link pattern is
checked first and never reaches the oracle.

When in doubt we answer "question": treating a question as an expense
writes garbage into the user's books, treating an expense as a question
only costs the user a retry.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from src.agents.oracle import CompletionOracle, OracleResponseError, first_word
from src.agents.resilience import ResilientCall
from src.linking.verifier import is_link_request
from src.models.transaction import Intent


GREETING_WORDS = frozenset({
    "hi", "hello", "hey", "hiya", "yo", "hola", "namaste",
    "good morning", "good afternoon", "good evening",
})

QUESTION_LEAD_WORDS = frozenset({
    "what", "how", "why", "when", "where", "who", "which",
    "can", "could", "do", "does", "is", "are", "help",
})

_MENU_DIGIT = re.compile(r"^[1-9]$")
_HAS_DIGIT = re.compile(r"\d")


class IntentClassifierInterface(ABC):
    """A way of deciding the intent of a message."""

    @abstractmethod
    async def classify(self, message_text: str, is_linked: bool) -> Intent:
        pass


class HeuristicIntentClassifier(IntentClassifierInterface):
    """
    Rule-based classifier.

    Rules, first match wins:
    1. link code pattern            -> link
    2. exact greeting word          -> greeting
    3. "?" or interrogative lead    -> question
    4. bare menu digit ("1".."9")   -> question
    5. any digit                    -> transaction
    6. anything else                -> question
    """

    async def classify(self, message_text: str, is_linked: bool) -> Intent:
        return self.classify_text(message_text)

    def classify_text(self, message_text: str) -> Intent:
        text = (message_text or "").strip()
        lowered = re.sub(r"[!.,]+$", "", text.lower()).strip()

        if is_link_request(text):
            return Intent.LINK
        if lowered in GREETING_WORDS:
            return Intent.GREETING
        if "?" in text:
            return Intent.QUESTION

        words = lowered.split()
        if words and words[0] in QUESTION_LEAD_WORDS:
            return Intent.QUESTION
        if _MENU_DIGIT.match(lowered):
            return Intent.QUESTION
        if _HAS_DIGIT.search(text):
            return Intent.TRANSACTION
        return Intent.QUESTION


class OracleIntentClassifier(IntentClassifierInterface):
    """
    Asks the completion service for a one-word intent.

    Anything other than one of the four words is an OracleResponseError,
    and so is "link" for a message that does not match the link pattern.
    """

    def __init__(self, oracle: CompletionOracle):
        self._oracle = oracle

    def build_prompt(self, message_text: str, is_linked: bool) -> str:
        return f"""You are an intent classifier for Spenly, a WhatsApp expense tracking bot.
The user is {'linked' if is_linked else 'not linked'} to their Spenly account.

Message: "{message_text}"

Respond with ONLY one word: transaction, greeting, question, or link

Rules:
- "transaction": the user wants to record an expense (e.g. "pizza 10", "lunch $15", "coffee 5 dollars")
- "greeting": a simple greeting (e.g. "hi", "hello", "hey")
- "question": the user is asking something (e.g. "how do I add a transaction?", "what can you do?")
- "link": the message is a linking code starting with "link_"

Examples:
- "pizza 10" -> transaction
- "hi" -> greeting
- "how do I add expenses?" -> question
- "what can you do?" -> question
- "lunch $15" -> transaction"""

    async def classify(self, message_text: str, is_linked: bool) -> Intent:
        response = await self._oracle.complete(
            self.build_prompt(message_text, is_linked),
            temperature=0.1,
            max_tokens=10,
        )
        word = first_word(response)
        try:
            intent = Intent(word)
        except ValueError:
            raise OracleResponseError(f"Not an intent: {response[:50]!r}")

        if intent == Intent.LINK and not is_link_request(message_text):
            raise OracleResponseError("Oracle answered link for a non-link message")
        return intent


class IntentClassifier:
    """
    Intent classification with oracle-first, heuristic-fallback semantics.
    """

    def __init__(
        self,
        oracle_classifier: Optional[OracleIntentClassifier] = None,
        heuristic_classifier: Optional[HeuristicIntentClassifier] = None,
        resilient_call: Optional[ResilientCall] = None,
    ):
        self._oracle_classifier = oracle_classifier
        self._heuristic = heuristic_classifier or HeuristicIntentClassifier()
        self._call = resilient_call or ResilientCall("intent")

    async def classify(
        self,
        message_text: str,
        is_linked: bool,
        correlation_id: Optional[UUID] = None,
    ) -> Intent:
        if is_link_request(message_text):
            return Intent.LINK

        primary = None
        if self._oracle_classifier is not None:
            primary = lambda: self._oracle_classifier.classify(message_text, is_linked)

        return await self._call.run(
            primary=primary,
            fallback=lambda: self._heuristic.classify_text(message_text),
            correlation_id=correlation_id,
        )
