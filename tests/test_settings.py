"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from src.config import (
    AppSettings,
    DatabaseSettings,
    GeminiSettings,
    TwilioSettings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No .env file and no inherited configuration."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "GEMINI_API_KEY",
        "GEMINI_TIMEOUT_SECONDS",
        "DATABASE_URL",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_WHATSAPP_NUMBER",
        "DEFAULT_CURRENCY",
        "SUPPORTED_IMAGE_FORMATS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestGeminiSettings:
    """Tests for the oracle configuration."""

    def test_api_key_required(self):
        """Test that a missing key is a validation error."""
        with pytest.raises(ValidationError):
            GeminiSettings()

    def test_from_environment(self, monkeypatch):
        """Test environment variables with the GEMINI_ prefix."""
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "4.5")

        settings = GeminiSettings()

        assert settings.api_key == "key"
        assert settings.timeout_seconds == 4.5
        assert settings.temperature == 0.1


class TestDatabaseSettings:
    """Tests for the store configuration."""

    def test_url_required(self):
        """Test that the URL has no default."""
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_sqlite_url_unchanged(self, monkeypatch):
        """Test that non-Postgres URLs are kept as given."""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./spenly.db")
        assert DatabaseSettings().url == "sqlite+aiosqlite:///./spenly.db"

    def test_postgresql_url_upgraded(self):
        """Test that postgresql:// gets the asyncpg driver."""
        settings = DatabaseSettings(url="postgresql://u:p@localhost/spenly")
        assert settings.url == "postgresql+asyncpg://u:p@localhost/spenly"


class TestTwilioSettings:
    """Tests for the relay configuration."""

    def test_sender_address_prefix(self):
        """Test that the sender always carries the whatsapp: prefix."""
        plain = TwilioSettings(account_sid="AC1", auth_token="t", whatsapp_number="+14155238886")
        prefixed = TwilioSettings(
            account_sid="AC1", auth_token="t", whatsapp_number="whatsapp:+14155238886"
        )

        assert plain.sender_address == "whatsapp:+14155238886"
        assert prefixed.sender_address == "whatsapp:+14155238886"
        assert plain.validate_signature is True


class TestAppSettings:
    """Tests for general application settings."""

    def test_defaults(self):
        """Test default values."""
        settings = AppSettings()

        assert settings.default_currency == "USD"
        assert settings.supported_formats_list == ["jpeg", "png", "webp", "gif"]
        assert settings.max_attachment_size_bytes == 10 * 1024 * 1024

    def test_currency_upper_cased(self, monkeypatch):
        """Test that the default currency is normalized."""
        monkeypatch.setenv("DEFAULT_CURRENCY", "inr")
        assert AppSettings().default_currency == "INR"

    def test_invalid_currency(self):
        """Test that the currency must be a 3-letter code."""
        with pytest.raises(ValidationError):
            AppSettings(default_currency="RUPEES")
