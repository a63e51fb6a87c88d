"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against PostgreSQL in production and SQLite locally
2. Use in-memory storage for testing and for running without a database
3. Keep the pipeline decoupled from the storage implementation

The interface is intentionally narrow - only what the chat intake pipeline
needs. Issuing link codes, syncing categories from the companion app and
flipping sync status are done by other services against the same tables.
"""

from abc import ABC, abstractmethod
from typing import Optional

from src.models.transaction import (
    LinkedIdentity,
    LinkToken,
    TransactionRecord,
    UserCategory,
)


class LinkStorageInterface(ABC):
    """
    Abstract interface for link tokens and linked identities.
    """

    @abstractmethod
    async def get_link_token(self, code: str) -> Optional[LinkToken]:
        """
        Look up a link token by its exact (lower-case) code.

        Returns:
            The token if found, None otherwise
        """
        pass

    @abstractmethod
    async def consume_token_and_link(
        self,
        code: str,
        identity: LinkedIdentity,
    ) -> bool:
        """
        Atomically consume a token and bind the identity it grants.

        Sets used_at (to identity.linked_at) only if it is currently null,
        then creates or overwrites the identity for identity.owner_id. Any
        other owner bound to the same messaging address loses that binding.
        Both changes commit together or not at all, so a failed write
        leaves the code usable.

        Returns:
            True if this call consumed the token and linked, False if it
            was already used (or does not exist)

        Raises:
            PersistenceError: If the write fails (nothing was changed)
        """
        pass

    @abstractmethod
    async def get_identity_by_address(
        self,
        messaging_address: str,
    ) -> Optional[LinkedIdentity]:
        """
        Find who a messaging address is linked to.

        Returns:
            The identity if the address is linked, None otherwise
        """
        pass


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage.

    Write-only from the pipeline's point of view.
    """

    @abstractmethod
    async def save_transaction(self, record: TransactionRecord) -> bool:
        """
        Persist a new transaction (sync_status pending_sync).

        Not retried: a failed insert is reported to the user instead.

        Returns:
            True if saved successfully

        Raises:
            PersistenceError: If the insert fails
        """
        pass


class CategoryStorageInterface(ABC):
    """
    Abstract interface for the user's synced category set (read-only).
    """

    @abstractmethod
    async def list_categories(self, owner_id: str) -> list[UserCategory]:
        """
        Get the owner's categories in the order they were synced.

        Returns:
            List of categories (may be empty)
        """
        pass


class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class StorageConnectionError(StorageError):
    """Failed to connect to storage backend."""
    pass


class PersistenceError(StorageError):
    """A write could not be completed."""
    pass
