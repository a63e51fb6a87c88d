"""Account linking package."""

from src.linking.verifier import (
    InvalidLinkCodeError,
    LinkCodeAlreadyUsedError,
    LinkCodeExpiredError,
    LinkTokenVerifier,
    LinkVerificationError,
    is_link_request,
    normalize_link_code,
)

__all__ = [
    "InvalidLinkCodeError",
    "LinkCodeAlreadyUsedError",
    "LinkCodeExpiredError",
    "LinkTokenVerifier",
    "LinkVerificationError",
    "is_link_request",
    "normalize_link_code",
]
