"""
Link Token Verifier

Binds a messaging address to a companion app account using a one-time
code the user generated in the app and sent as "link_<code>".

DESIGN DECISION: Consumption is a compare-and-set in the store (set used_at
only where it is still null). The relay delivers at-least-once, so the same
link message can arrive twice at the same moment; exactly one delivery
links, the other sees "already used".

Check order:
1. Unknown code        -> invalid
2. used_at is set      -> already_used
3. now > expires_at    -> expired
4. consume + upsert    -> linked (one atomic store write; a failed write
                          leaves the code usable for a retry)
"""

import re
from datetime import datetime
from typing import Optional

import structlog

from src.models.transaction import (
    LinkedIdentity,
    LinkToken,
    LinkOutcome,
    LinkStatus,
    utc_now,
)
from src.services.storage.interface import LinkStorageInterface


logger = structlog.get_logger("spenly.linking")

LINK_PREFIX = "link_"

_LINK_PATTERN = re.compile(r"^link_(?P<code>[a-z0-9][a-z0-9\-]*)$")


class LinkVerificationError(Exception):
    """Base exception for link codes that cannot be used."""

    status: LinkStatus = LinkStatus.INVALID


class InvalidLinkCodeError(LinkVerificationError):
    """No token with this code exists."""

    status = LinkStatus.INVALID


class LinkCodeExpiredError(LinkVerificationError):
    """The token expired before it was used."""

    status = LinkStatus.EXPIRED


class LinkCodeAlreadyUsedError(LinkVerificationError):
    """The token was consumed before (possibly a duplicate delivery)."""

    status = LinkStatus.ALREADY_USED


def normalize_link_code(text: Optional[str]) -> Optional[str]:
    """
    Return the lookup code if `text` is a link request, else None.

    "  LINK_Ab12 " -> "ab12"
    """
    if not text:
        return None
    match = _LINK_PATTERN.match(text.strip().lower())
    return match.group("code") if match else None


def is_link_request(text: Optional[str]) -> bool:
    return normalize_link_code(text) is not None


class LinkTokenVerifier:
    """
    Verifies link codes and records the resulting identity.

    RESPONSIBILITIES:
    - Decide invalid / already_used / expired / linked
    - Consume the token at most once
    - Upsert the LinkedIdentity with the token's currency

    BOUNDARIES:
    - Does NOT issue tokens (the companion app does)
    - Does NOT reply to the user (the pipeline does)
    """

    def __init__(self, storage: LinkStorageInterface):
        self._storage = storage

    async def verify(self, code: str, now: datetime) -> LinkToken:
        """
        Check a code without consuming it.

        Raises:
            InvalidLinkCodeError, LinkCodeAlreadyUsedError, LinkCodeExpiredError
        """
        token = await self._storage.get_link_token(code)
        if token is None:
            raise InvalidLinkCodeError(f"Unknown link code: {code}")
        if token.is_used:
            raise LinkCodeAlreadyUsedError(f"Link code already used: {code}")
        if token.is_expired(now):
            raise LinkCodeExpiredError(f"Link code expired at {token.expires_at.isoformat()}")
        return token

    async def verify_and_link(
        self,
        code: str,
        messaging_address: str,
        now: Optional[datetime] = None,
    ) -> LinkOutcome:
        """
        Verify a code and, if usable, bind `messaging_address` to its owner.

        Args:
            code: Raw code, with or without the link_ prefix, any case
            messaging_address: Sender address as delivered by the relay
            now: Reference time (defaults to the current UTC time)

        Returns:
            LinkOutcome. Only status=linked changed any state.

        Raises:
            StorageError: If the store is unreachable
        """
        now = now or utc_now()
        lookup = code.strip().lower()
        if lookup.startswith(LINK_PREFIX):
            lookup = lookup[len(LINK_PREFIX):]

        try:
            token = await self.verify(lookup, now)
            identity = LinkedIdentity(
                owner_id=token.owner_id,
                messaging_address=messaging_address,
                linked_at=now,
                currency=token.default_currency,
            )
            if not await self._storage.consume_token_and_link(token.code, identity):
                # Another delivery consumed it between our read and our write
                raise LinkCodeAlreadyUsedError(f"Link code already used: {lookup}")
        except LinkVerificationError as e:
            logger.info(
                "link_rejected",
                status=e.status.value,
                messaging_address=messaging_address,
            )
            return LinkOutcome(status=e.status)

        logger.info(
            "link_succeeded",
            owner_id=token.owner_id,
            messaging_address=messaging_address,
        )
        return LinkOutcome(
            status=LinkStatus.LINKED,
            owner_id=token.owner_id,
            currency=token.default_currency,
        )
