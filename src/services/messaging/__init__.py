"""Messaging relay package."""

from src.services.messaging.twilio_relay import (
    MissingConfigurationError,
    RelayDeliveryError,
    TwilioRelay,
    strip_channel_prefix,
)

__all__ = [
    "MissingConfigurationError",
    "RelayDeliveryError",
    "TwilioRelay",
    "strip_channel_prefix",
]
