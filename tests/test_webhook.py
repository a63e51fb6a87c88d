"""Tests for the Twilio relay adapter and the webhook app."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator

from app.main import WEBHOOK_PATH, create_app
from src.config import TwilioSettings
from src.models.audit import AuditEventType
from src.models.transaction import LinkToken, utc_now
from src.orchestrator import MessagePipeline
from src.services.messaging import (
    MissingConfigurationError,
    RelayDeliveryError,
    TwilioRelay,
    strip_channel_prefix,
)
from src.services.storage import InMemoryStorage

from conftest import OWNER_ID


AUTH_TOKEN = "test-auth-token"
SENDER = "whatsapp:+15550001111"
WEBHOOK_URL = f"http://testserver{WEBHOOK_PATH}"


class FakeMessages:
    def __init__(self, error: Exception = None):
        self.error = error
        self.sent: list[dict] = []

    def create(self, from_, to, body):
        if self.error is not None:
            raise self.error
        self.sent.append({"from_": from_, "to": to, "body": body})
        return type("Message", (), {"sid": f"SM{len(self.sent)}"})()


class FakeTwilioClient:
    def __init__(self, error: Exception = None):
        self.messages = FakeMessages(error)


def twilio_settings(**overrides) -> TwilioSettings:
    values = dict(
        account_sid="AC123",
        auth_token=AUTH_TOKEN,
        whatsapp_number="+14155238886",
    )
    values.update(overrides)
    return TwilioSettings(**values)


def sign(params: dict) -> str:
    return RequestValidator(AUTH_TOKEN).compute_signature(WEBHOOK_URL, params)


class TestTwilioRelay:
    """Tests for the relay adapter."""

    def test_missing_configuration(self, monkeypatch, tmp_path):
        """Test that the relay refuses to start without credentials."""
        monkeypatch.chdir(tmp_path)
        for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_WHATSAPP_NUMBER"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(MissingConfigurationError) as exc_info:
            TwilioRelay()
        assert "TWILIO_AUTH_TOKEN" in str(exc_info.value)

    def test_strip_channel_prefix(self):
        """Test address normalization."""
        assert strip_channel_prefix("whatsapp:+15550001111") == "+15550001111"
        assert strip_channel_prefix("+15550001111") == "+15550001111"

    def test_parse_inbound_with_media(self):
        """Test form fields of a photo message."""
        relay = TwilioRelay(twilio_settings(), client=FakeTwilioClient())
        inbound = relay.parse_inbound({
            "From": SENDER,
            "Body": "",
            "NumMedia": "1",
            "MediaUrl0": "https://api.twilio.com/media/ME1",
            "MediaContentType0": "image/jpeg",
        })

        assert inbound.sender_address == "+15550001111"
        assert inbound.has_attachment
        assert inbound.attachment_content_type == "image/jpeg"

    def test_parse_inbound_text(self):
        """Test that a bad NumMedia is read as no attachment."""
        relay = TwilioRelay(twilio_settings(), client=FakeTwilioClient())
        inbound = relay.parse_inbound({"From": SENDER, "Body": "Pizza $15", "NumMedia": "x"})

        assert inbound.body_text == "Pizza $15"
        assert not inbound.has_attachment

    def test_signature(self):
        """Test webhook signature validation."""
        relay = TwilioRelay(twilio_settings(), client=FakeTwilioClient())
        params = {"From": SENDER, "Body": "hi"}

        assert relay.is_valid_request(WEBHOOK_URL, params, sign(params))
        assert not relay.is_valid_request(WEBHOOK_URL, params, "bogus")
        assert not relay.is_valid_request(WEBHOOK_URL, params, None)

    def test_signature_behind_proxy(self):
        """Test that the public URL is used for validation when configured."""
        relay = TwilioRelay(
            twilio_settings(public_webhook_url=WEBHOOK_URL),
            client=FakeTwilioClient(),
        )
        params = {"From": SENDER, "Body": "hi"}
        assert relay.is_valid_request("http://10.0.0.5:8000/api/whatsapp/webhook", params, sign(params))

    async def test_send_reply(self):
        """Test outbound addressing and body truncation."""
        client = FakeTwilioClient()
        relay = TwilioRelay(twilio_settings(), client=client)

        assert await relay.send_reply("+15550001111", "x" * 2000) is True

        [sent] = client.messages.sent
        assert sent["from_"] == "whatsapp:+14155238886"
        assert sent["to"] == SENDER
        assert len(sent["body"]) == 1600

    async def test_send_failure(self):
        """Test that Twilio errors become RelayDeliveryError."""
        relay = TwilioRelay(twilio_settings(), client=FakeTwilioClient(TwilioException("rejected")))
        with pytest.raises(RelayDeliveryError):
            await relay.send_reply("+15550001111", "hi")


class TestWebhook:
    """Tests for the FastAPI webhook."""

    @pytest.fixture
    def storage(self) -> InMemoryStorage:
        storage = InMemoryStorage()
        storage.add_link_token(
            LinkToken(code="ab12", owner_id=OWNER_ID, expires_at=utc_now() + timedelta(minutes=10))
        )
        return storage

    def make_client(self, storage, audit_logger, twilio_client, **settings) -> TestClient:
        pipeline = MessagePipeline(
            link_storage=storage,
            transaction_storage=storage,
            category_storage=storage,
            audit_logger=audit_logger,
        )
        relay = TwilioRelay(twilio_settings(**settings), client=twilio_client)
        return TestClient(create_app(pipeline=pipeline, relay=relay))

    def post(self, client: TestClient, body: str, signed: bool = True):
        params = {"From": SENDER, "Body": body, "NumMedia": "0"}
        headers = {"X-Twilio-Signature": sign(params)} if signed else {}
        return client.post(WEBHOOK_PATH, data=params, headers=headers)

    def test_link_then_transaction(self, storage, audit_logger):
        """Test a user linking and then sending an expense."""
        twilio_client = FakeTwilioClient()

        with self.make_client(storage, audit_logger, twilio_client) as client:
            linked = self.post(client, "link_ab12")
            saved = self.post(client, "Pizza $15")

        assert linked.status_code == 200
        assert saved.status_code == 200
        assert saved.headers["content-type"].startswith("application/xml")
        assert "<Response" in saved.text

        bodies = [message["body"] for message in twilio_client.messages.sent]
        assert bodies[0].startswith("✅ Account linked!")
        assert bodies[1].startswith("✅ Transaction added:")
        assert all(message["to"] == SENDER for message in twilio_client.messages.sent)
        assert len(storage.transactions) == 1

    def test_invalid_signature(self, storage, audit_logger):
        """Test that unsigned requests are refused and not processed."""
        twilio_client = FakeTwilioClient()

        with self.make_client(storage, audit_logger, twilio_client) as client:
            response = self.post(client, "link_ab12", signed=False)

        assert response.status_code == 403
        assert twilio_client.messages.sent == []
        assert storage.identities == []

    def test_signature_check_disabled(self, storage, audit_logger):
        """Test local development without signatures."""
        twilio_client = FakeTwilioClient()

        with self.make_client(storage, audit_logger, twilio_client, validate_signature=False) as client:
            response = self.post(client, "hi", signed=False)

        assert response.status_code == 200
        assert len(twilio_client.messages.sent) == 1

    def test_delivery_failure_is_acknowledged(self, storage, audit_logger):
        """Test that a failed reply still answers the webhook with 200."""
        twilio_client = FakeTwilioClient(TwilioException("rejected"))

        with self.make_client(storage, audit_logger, twilio_client) as client:
            response = self.post(client, "hi")

        assert response.status_code == 200
        assert AuditEventType.REPLY_DELIVERY_FAILED in [
            event.event_type for event in audit_logger.history
        ]

    def test_missing_sender(self, storage, audit_logger):
        """Test that a payload without a sender is acknowledged and dropped."""
        twilio_client = FakeTwilioClient()
        params = {"Body": "hi"}

        with self.make_client(storage, audit_logger, twilio_client) as client:
            response = client.post(
                WEBHOOK_PATH,
                data=params,
                headers={"X-Twilio-Signature": sign(params)},
            )

        assert response.status_code == 200
        assert twilio_client.messages.sent == []

    def test_health(self, storage, audit_logger):
        """Test the health endpoint."""
        with self.make_client(storage, audit_logger, FakeTwilioClient()) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert set(data["configured"]) == {"gemini", "database", "twilio", "app"}
        assert all(isinstance(value, bool) for value in data["configured"].values())
