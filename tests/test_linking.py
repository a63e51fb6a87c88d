"""Tests for link code verification and identity binding."""

import asyncio
from datetime import timedelta

import pytest

from src.linking import (
    InvalidLinkCodeError,
    LinkCodeAlreadyUsedError,
    LinkCodeExpiredError,
    LinkTokenVerifier,
    is_link_request,
    normalize_link_code,
)
from src.models.transaction import LinkedIdentity, LinkStatus
from src.services.storage import PersistenceError

from conftest import NOW, FlakyStorage


class TestLinkCodePattern:
    """Tests for recognising link requests."""

    def test_normalize(self):
        """Test that codes are trimmed and lower-cased."""
        assert normalize_link_code("  LINK_Ab12 ") == "ab12"
        assert normalize_link_code("link_abc-123") == "abc-123"

    def test_not_a_link(self):
        """Test messages that only look like link requests."""
        assert not is_link_request("link")
        assert not is_link_request("link_")
        assert not is_link_request("link_ab12 please")
        assert not is_link_request("pizza 10")
        assert not is_link_request(None)


class TestVerify:
    """Tests for LinkTokenVerifier.verify."""

    async def test_unknown_code(self, storage):
        """Test that an unknown code is invalid."""
        verifier = LinkTokenVerifier(storage)
        with pytest.raises(InvalidLinkCodeError):
            await verifier.verify("nope", NOW)

    async def test_used_is_checked_before_expiry(self, storage, make_token):
        """Test that a used and expired token reports already used."""
        storage.add_link_token(
            make_token(expires_in=timedelta(minutes=-5), used_at=NOW - timedelta(minutes=6))
        )
        verifier = LinkTokenVerifier(storage)
        with pytest.raises(LinkCodeAlreadyUsedError):
            await verifier.verify("ab12", NOW)

    async def test_expired(self, storage, make_token):
        """Test that an expired token is rejected."""
        storage.add_link_token(make_token(expires_in=timedelta(seconds=-1)))
        verifier = LinkTokenVerifier(storage)
        with pytest.raises(LinkCodeExpiredError):
            await verifier.verify("ab12", NOW)

    async def test_valid_token_is_not_consumed(self, storage, make_token):
        """Test that verify alone changes nothing."""
        storage.add_link_token(make_token())
        verifier = LinkTokenVerifier(storage)

        token = await verifier.verify("ab12", NOW)

        assert token.owner_id == "owner-1"
        assert not (await storage.get_link_token("ab12")).is_used


class TestVerifyAndLink:
    """Tests for LinkTokenVerifier.verify_and_link."""

    async def test_link_with_token_currency(self, storage, make_token):
        """Test a successful link records the token's currency."""
        storage.add_link_token(make_token(default_currency="INR"))
        verifier = LinkTokenVerifier(storage)

        outcome = await verifier.verify_and_link("link_AB12", "+919800000000", now=NOW)

        assert outcome.status == LinkStatus.LINKED
        assert outcome.owner_id == "owner-1"
        assert outcome.currency == "INR"

        identity = await storage.get_identity_by_address("+919800000000")
        assert identity.owner_id == "owner-1"
        assert identity.currency == "INR"
        assert identity.linked_at == NOW
        assert (await storage.get_link_token("ab12")).used_at == NOW

    async def test_expired_changes_nothing(self, storage, make_token):
        """Test that an expired code neither consumes nor binds."""
        storage.add_link_token(make_token(expires_in=timedelta(minutes=-1)))
        verifier = LinkTokenVerifier(storage)

        outcome = await verifier.verify_and_link("ab12", "+15550002222", now=NOW)

        assert outcome.status == LinkStatus.EXPIRED
        assert outcome.owner_id is None
        assert storage.identities == []
        assert not (await storage.get_link_token("ab12")).is_used

    async def test_second_use_is_rejected(self, storage, make_token):
        """Test that a token links only once."""
        storage.add_link_token(make_token())
        verifier = LinkTokenVerifier(storage)

        first = await verifier.verify_and_link("ab12", "+15550002222", now=NOW)
        second = await verifier.verify_and_link("ab12", "+15550003333", now=NOW)

        assert first.status == LinkStatus.LINKED
        assert second.status == LinkStatus.ALREADY_USED
        assert await storage.get_identity_by_address("+15550003333") is None

    async def test_invalid(self, storage):
        """Test an unknown code."""
        verifier = LinkTokenVerifier(storage)
        outcome = await verifier.verify_and_link("link_zz99", "+15550002222", now=NOW)
        assert outcome.status == LinkStatus.INVALID

    async def test_concurrent_deliveries_link_once(self, storage, make_token):
        """Test that duplicate deliveries of the same code consume it once."""
        storage.add_link_token(make_token())
        verifier = LinkTokenVerifier(storage)

        outcomes = await asyncio.gather(
            verifier.verify_and_link("ab12", "+15550002222", now=NOW),
            verifier.verify_and_link("ab12", "+15550002222", now=NOW),
        )

        statuses = sorted(outcome.status.value for outcome in outcomes)
        assert statuses == ["already_used", "linked"]
        assert len(storage.identities) == 1

    async def test_relink_replaces_previous_address(self, storage, make_token):
        """Test that linking a new phone replaces the owner's old address."""
        await storage.upsert_linked_identity(
            LinkedIdentity(owner_id="owner-1", messaging_address="+15550009999", linked_at=NOW)
        )
        storage.add_link_token(make_token())
        verifier = LinkTokenVerifier(storage)

        await verifier.verify_and_link("ab12", "+15550002222", now=NOW)

        assert await storage.get_identity_by_address("+15550009999") is None
        assert (await storage.get_identity_by_address("+15550002222")).owner_id == "owner-1"

    async def test_address_moves_to_new_owner(self, storage, make_token):
        """Test that an address bound to another owner is rebound."""
        await storage.upsert_linked_identity(
            LinkedIdentity(owner_id="owner-0", messaging_address="+15550002222", linked_at=NOW)
        )
        storage.add_link_token(make_token(owner_id="owner-1"))
        verifier = LinkTokenVerifier(storage)

        await verifier.verify_and_link("ab12", "+15550002222", now=NOW)

        assert [identity.owner_id for identity in storage.identities] == ["owner-1"]

    async def test_failed_identity_write_keeps_code_usable(self, make_token):
        """Test that the code is not consumed when binding the identity fails."""
        storage = FlakyStorage(failing_binds=1)
        storage.add_link_token(make_token())
        verifier = LinkTokenVerifier(storage)

        with pytest.raises(PersistenceError):
            await verifier.verify_and_link("link_ab12", "+15550002222", now=NOW)

        assert not (await storage.get_link_token("ab12")).is_used
        assert storage.identities == []

        retried = await verifier.verify_and_link("link_ab12", "+15550002222", now=NOW)

        assert retried.status == LinkStatus.LINKED
        assert (await storage.get_link_token("ab12")).used_at == NOW
        assert (await storage.get_identity_by_address("+15550002222")).owner_id == "owner-1"
