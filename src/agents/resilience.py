"""
Resilient Calls: oracle first, deterministic second

DESIGN DECISION: Intent classification, transaction extraction,
category resolution and conversational replies all follow the same shape:
ask the oracle, and if that fails in ANY way, use a deterministic answer.
That shape lives here once instead of as try/except blocks at every call
site.

A fallback is taken when:
- No oracle is configured (primary is None)
- The oracle raises an OracleError (unavailable, malformed, rejected)
- The oracle does not answer within the timeout

Every fallback is recorded in the audit trail.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Optional, TypeVar, Union
from uuid import UUID

import structlog

from src.agents.oracle import OracleError
from src.audit import AuditLogger


T = TypeVar("T")

logger = structlog.get_logger("spenly.resilience")


class ResilientCall:
    """
    Compose an oracle implementation with a deterministic one.

    Usage:
        call = ResilientCall("intent", timeout_seconds=10)
        intent = await call.run(
            primary=lambda: oracle_classifier.classify(text),
            fallback=lambda: heuristic_classifier.classify(text),
        )
    """

    def __init__(
        self,
        capability: str,
        timeout_seconds: float = 15.0,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.capability = capability
        self.timeout_seconds = timeout_seconds
        self._audit = audit_logger

    async def run(
        self,
        primary: Optional[Callable[[], Awaitable[T]]],
        fallback: Callable[[], Union[T, Awaitable[T]]],
        correlation_id: Optional[UUID] = None,
    ) -> T:
        """
        Return the primary's answer, or the fallback's when the primary fails.

        Exceptions raised by the fallback itself propagate.
        """
        if primary is not None:
            try:
                return await asyncio.wait_for(primary(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                reason = f"timed out after {self.timeout_seconds}s"
            except OracleError as e:
                reason = f"{type(e).__name__}: {e}"
        else:
            reason = "oracle not configured"

        logger.info(
            "oracle_fallback",
            capability=self.capability,
            reason=reason,
        )
        if self._audit is not None:
            await self._audit.log_oracle_fallback(
                capability=self.capability,
                reason=reason,
                correlation_id=correlation_id,
            )

        result = fallback()
        if inspect.isawaitable(result):
            result = await result
        return result
