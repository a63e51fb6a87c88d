"""
Messaging Relay (Twilio WhatsApp)

DESIGN DECISION: The relay adapter is the one collaborator we cannot run
without: with no credentials, no reply can ever be delivered. Missing
configuration therefore raises MissingConfigurationError at construction,
so the webhook app fails at startup with a clear message instead of
accepting messages it can never answer.

This adapter handles:
1. Webhook signature validation (X-Twilio-Signature)
2. Converting webhook form fields into an InboundMessage
3. Sending replies through the REST API
4. The empty TwiML acknowledgement the webhook returns
"""

import asyncio
from typing import Mapping, Optional

import structlog
from pydantic import ValidationError
from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse

from src.config import TwilioSettings
from src.models.transaction import InboundMessage


logger = structlog.get_logger("spenly.relay")

WHATSAPP_PREFIX = "whatsapp:"

# WhatsApp rejects longer bodies
MAX_BODY_LENGTH = 1600


class MissingConfigurationError(Exception):
    """A required collaborator is not configured."""
    pass


class RelayDeliveryError(Exception):
    """A reply could not be handed to the relay."""
    pass


def strip_channel_prefix(address: str) -> str:
    """"whatsapp:+15551234567" -> "+15551234567"."""
    address = (address or "").strip()
    if address.lower().startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


def _as_int(value: Optional[str]) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class TwilioRelay:
    """
    Twilio WhatsApp adapter.

    RESPONSIBILITIES:
    - Authenticate inbound webhooks
    - Parse inbound messages
    - Deliver outbound replies

    BOUNDARIES:
    - Knows nothing about linking, parsing or storage
    """

    def __init__(
        self,
        settings: Optional[TwilioSettings] = None,
        client: Optional[Client] = None,
    ):
        if settings is None:
            try:
                settings = TwilioSettings()
            except ValidationError as e:
                missing = ", ".join(
                    f"TWILIO_{'_'.join(str(p) for p in err['loc']).upper()}"
                    for err in e.errors()
                )
                raise MissingConfigurationError(
                    f"Twilio relay is not configured (missing or invalid: {missing})"
                ) from e

        self._settings = settings
        self._validator = RequestValidator(settings.auth_token)
        self._client = client

    @property
    def settings(self) -> TwilioSettings:
        return self._settings

    @property
    def media_auth(self) -> tuple[str, str]:
        """Basic auth for downloading Twilio-hosted media."""
        return self._settings.account_sid, self._settings.auth_token

    def _get_client(self) -> Client:
        """Get or create the REST client."""
        if self._client is None:
            self._client = Client(self._settings.account_sid, self._settings.auth_token)
        return self._client

    def is_valid_request(
        self,
        url: str,
        params: Mapping[str, str],
        signature: Optional[str],
    ) -> bool:
        """
        Check the X-Twilio-Signature of a webhook request.

        Always True when signature validation is disabled.
        """
        if not self._settings.validate_signature:
            return True
        if not signature:
            return False
        target = self._settings.public_webhook_url or url
        return self._validator.validate(target, dict(params), signature)

    def parse_inbound(self, form: Mapping[str, str]) -> InboundMessage:
        """Convert webhook form fields to an InboundMessage."""
        attachment_count = _as_int(form.get("NumMedia"))
        return InboundMessage(
            sender_address=strip_channel_prefix(form.get("From", "")),
            body_text=form.get("Body") or "",
            attachment_count=attachment_count,
            attachment_url=form.get("MediaUrl0") if attachment_count else None,
            attachment_content_type=form.get("MediaContentType0") if attachment_count else None,
        )

    def _send(self, to: str, body: str) -> str:
        message = self._get_client().messages.create(
            from_=self._settings.sender_address,
            to=f"{WHATSAPP_PREFIX}{strip_channel_prefix(to)}",
            body=body[:MAX_BODY_LENGTH],
        )
        return message.sid

    async def send_reply(self, to: str, body: str) -> bool:
        """
        Send a WhatsApp message.

        The REST client is blocking, so it runs in a worker thread.

        Raises:
            RelayDeliveryError: If Twilio rejects or cannot take the message
        """
        try:
            sid = await asyncio.to_thread(self._send, to, body)
        except TwilioException as e:
            raise RelayDeliveryError(f"Twilio rejected the reply: {e}") from e
        except OSError as e:
            raise RelayDeliveryError(f"Could not reach Twilio: {e}") from e

        logger.info("reply_sent", to=to, message_sid=sid)
        return True

    @staticmethod
    def empty_response() -> str:
        """Empty TwiML acknowledgement (the reply is sent out of band)."""
        return str(MessagingResponse())
