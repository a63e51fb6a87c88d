"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The SQL implementation runs on PostgreSQL or SQLite; the in-memory one is
used in tests and when no database is configured.
"""

from src.services.storage.interface import (
    CategoryStorageInterface,
    LinkStorageInterface,
    PersistenceError,
    StorageConnectionError,
    StorageError,
    TransactionStorageInterface,
)
from src.services.storage.memory import InMemoryStorage
from src.services.storage.sql import (
    DatabaseClient,
    SqlCategoryStorage,
    SqlLinkStorage,
    SqlTransactionStorage,
)

__all__ = [
    # Interfaces
    "CategoryStorageInterface",
    "LinkStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "PersistenceError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "DatabaseClient",
    "InMemoryStorage",
    "SqlCategoryStorage",
    "SqlLinkStorage",
    "SqlTransactionStorage",
]
