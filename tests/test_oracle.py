"""Tests for oracle helpers and the resilient call wrapper."""

import asyncio

import pytest

from src.agents.oracle import (
    OracleResponseError,
    OracleUnavailableError,
    extract_json_object,
    first_word,
)
from src.agents.resilience import ResilientCall
from src.models.audit import AuditEventType


class TestExtractJsonObject:
    """Tests for pulling JSON out of model answers."""

    def test_plain_object(self):
        """Test a bare JSON object."""
        assert extract_json_object('{"amount": 5}') == {"amount": 5}

    def test_fenced_object_with_prose(self):
        """Test code fences and surrounding text."""
        text = 'Here you go:\n```json\n{"amount": 5, "vendor": "Cafe"}\n```\nAnything else?'
        assert extract_json_object(text) == {"amount": 5, "vendor": "Cafe"}

    @pytest.mark.parametrize("text", ["", "no json here", '{"amount": ', "[1, 2]", None])
    def test_unusable(self, text):
        """Test answers without a JSON object."""
        with pytest.raises(OracleResponseError):
            extract_json_object(text)


class TestFirstWord:
    """Tests for one-word answers."""

    def test_punctuation_and_case(self):
        """Test that quotes, punctuation and case are ignored."""
        assert first_word('"Greeting."') == "greeting"
        assert first_word("  question\n") == "question"
        assert first_word("") == ""


class TestResilientCall:
    """Tests for ResilientCall.run."""

    async def test_primary_answer(self):
        """Test that the primary result is returned when it succeeds."""
        async def primary():
            return "oracle"

        call = ResilientCall("test")
        assert await call.run(primary, lambda: "fallback") == "oracle"

    async def test_oracle_error(self, audit_logger):
        """Test the fallback on an OracleError, with an audit entry."""
        async def primary():
            raise OracleUnavailableError("down")

        call = ResilientCall("test", audit_logger=audit_logger)
        assert await call.run(primary, lambda: "fallback") == "fallback"

        events = audit_logger.history
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.ORACLE_FALLBACK
        assert "down" in events[0].error_message

    async def test_timeout(self):
        """Test the fallback when the primary is too slow."""
        async def primary():
            await asyncio.sleep(1)
            return "oracle"

        call = ResilientCall("test", timeout_seconds=0.01)
        assert await call.run(primary, lambda: "fallback") == "fallback"

    async def test_no_primary(self, audit_logger):
        """Test that a missing oracle goes straight to the fallback."""
        call = ResilientCall("test", audit_logger=audit_logger)
        assert await call.run(None, lambda: "fallback") == "fallback"
        assert audit_logger.history[0].error_message == "oracle not configured"

    async def test_async_fallback(self):
        """Test that awaitable fallbacks are awaited."""
        async def fallback():
            return "async fallback"

        call = ResilientCall("test")
        assert await call.run(None, fallback) == "async fallback"

    async def test_other_errors_propagate(self):
        """Test that programming errors are not hidden by the fallback."""
        async def primary():
            raise KeyError("bug")

        call = ResilientCall("test")
        with pytest.raises(KeyError):
            await call.run(primary, lambda: "fallback")
