"""
AI Agents Package

Every capability here has an oracle implementation and a deterministic
one, composed with ResilientCall. The oracle is never required.
"""

from src.agents.categories import CategoryResolver, expense_category_names
from src.agents.extraction import AIExtractionClient, ExtractionPayload
from src.agents.intent import (
    HeuristicIntentClassifier,
    IntentClassifier,
    IntentClassifierInterface,
    OracleIntentClassifier,
)
from src.agents.oracle import (
    CompletionOracle,
    ExtractionFailedError,
    GeminiOracle,
    OracleError,
    OracleResponseError,
    OracleTimeoutError,
    OracleUnavailableError,
    extract_json_object,
)
from src.agents.replies import ConversationResponder, format_confirmation
from src.agents.resilience import ResilientCall

__all__ = [
    "AIExtractionClient",
    "CategoryResolver",
    "CompletionOracle",
    "ConversationResponder",
    "ExtractionFailedError",
    "ExtractionPayload",
    "GeminiOracle",
    "HeuristicIntentClassifier",
    "IntentClassifier",
    "IntentClassifierInterface",
    "OracleError",
    "OracleIntentClassifier",
    "OracleResponseError",
    "OracleTimeoutError",
    "OracleUnavailableError",
    "ResilientCall",
    "expense_category_names",
    "extract_json_object",
    "format_confirmation",
]
