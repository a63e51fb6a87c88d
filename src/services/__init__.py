"""Services package."""

from src.services.image import (
    AttachmentError,
    AttachmentFetcher,
    AttachmentFetchError,
    AttachmentTooLargeError,
    UnsupportedAttachmentError,
)
from src.services.messaging import (
    MissingConfigurationError,
    RelayDeliveryError,
    TwilioRelay,
)
from src.services.storage import (
    CategoryStorageInterface,
    DatabaseClient,
    InMemoryStorage,
    LinkStorageInterface,
    PersistenceError,
    SqlCategoryStorage,
    SqlLinkStorage,
    SqlTransactionStorage,
    StorageConnectionError,
    StorageError,
    TransactionStorageInterface,
)

__all__ = [
    # Attachments
    "AttachmentError",
    "AttachmentFetcher",
    "AttachmentFetchError",
    "AttachmentTooLargeError",
    "UnsupportedAttachmentError",
    # Messaging relay
    "MissingConfigurationError",
    "RelayDeliveryError",
    "TwilioRelay",
    # Storage services
    "CategoryStorageInterface",
    "DatabaseClient",
    "InMemoryStorage",
    "LinkStorageInterface",
    "PersistenceError",
    "SqlCategoryStorage",
    "SqlLinkStorage",
    "SqlTransactionStorage",
    "StorageConnectionError",
    "StorageError",
    "TransactionStorageInterface",
]
