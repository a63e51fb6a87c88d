"""
In-Memory Storage

Implements every storage interface with plain dicts. Used by the test
suite and as the degraded store when no database is configured (data is
lost on restart).
"""

import asyncio
from typing import Iterable, Optional

from src.models.transaction import (
    LinkedIdentity,
    LinkToken,
    TransactionRecord,
    UserCategory,
)
from src.services.storage.interface import (
    CategoryStorageInterface,
    LinkStorageInterface,
    TransactionStorageInterface,
)


class InMemoryStorage(
    LinkStorageInterface,
    TransactionStorageInterface,
    CategoryStorageInterface,
):
    """
    Process-local storage.

    Token consumption and identity binding run under one asyncio.Lock, so
    concurrent deliveries of the same link code consume it once and a
    failed bind leaves the token unused.
    """

    def __init__(self):
        self._tokens: dict[str, LinkToken] = {}
        self._identities: dict[str, LinkedIdentity] = {}
        self._transactions: list[TransactionRecord] = []
        self._categories: dict[str, list[UserCategory]] = {}
        self._lock = asyncio.Lock()

    # -- seeding helpers (the companion app's job in production) -------------

    def add_link_token(self, token: LinkToken) -> None:
        self._tokens[token.code] = token

    def set_categories(self, owner_id: str, categories: Iterable[UserCategory]) -> None:
        self._categories[owner_id] = list(categories)

    async def upsert_linked_identity(self, identity: LinkedIdentity) -> bool:
        """Bind an identity without a token."""
        async with self._lock:
            self._bind_identity(identity)
        return True

    @property
    def transactions(self) -> list[TransactionRecord]:
        return list(self._transactions)

    @property
    def identities(self) -> list[LinkedIdentity]:
        return list(self._identities.values())

    # -- LinkStorageInterface -------------------------------------------------

    async def get_link_token(self, code: str) -> Optional[LinkToken]:
        token = self._tokens.get(code.lower())
        return token.model_copy() if token else None

    async def consume_token_and_link(
        self,
        code: str,
        identity: LinkedIdentity,
    ) -> bool:
        async with self._lock:
            token = self._tokens.get(code.lower())
            if token is None or token.used_at is not None:
                return False
            self._bind_identity(identity)
            self._tokens[token.code] = token.model_copy(
                update={"used_at": identity.linked_at}
            )
            return True

    def _bind_identity(self, identity: LinkedIdentity) -> None:
        # The address may only belong to one owner
        stale = [
            owner_id
            for owner_id, existing in self._identities.items()
            if existing.messaging_address == identity.messaging_address
            and owner_id != identity.owner_id
        ]
        for owner_id in stale:
            del self._identities[owner_id]
        self._identities[identity.owner_id] = identity

    async def get_identity_by_address(
        self,
        messaging_address: str,
    ) -> Optional[LinkedIdentity]:
        for identity in self._identities.values():
            if identity.messaging_address == messaging_address:
                return identity
        return None

    # -- TransactionStorageInterface -----------------------------------------

    async def save_transaction(self, record: TransactionRecord) -> bool:
        self._transactions.append(record)
        return True

    # -- CategoryStorageInterface --------------------------------------------

    async def list_categories(self, owner_id: str) -> list[UserCategory]:
        return list(self._categories.get(owner_id, []))
