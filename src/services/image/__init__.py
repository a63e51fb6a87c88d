"""Receipt image services package."""

from src.services.image.fetcher import (
    AttachmentError,
    AttachmentFetcher,
    AttachmentFetchError,
    AttachmentTooLargeError,
    UnsupportedAttachmentError,
)

__all__ = [
    "AttachmentError",
    "AttachmentFetcher",
    "AttachmentFetchError",
    "AttachmentTooLargeError",
    "UnsupportedAttachmentError",
]
