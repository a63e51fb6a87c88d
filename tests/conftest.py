"""
Shared fixtures.

No test talks to Gemini, Twilio or a real database: the oracle is a
scripted fake, the store is in memory (or a temporary SQLite file) and
HTTP goes through httpx.MockTransport.
"""

from datetime import date, datetime, timedelta, timezone
from io import BytesIO
from typing import Callable, Optional, Union

import pytest
from PIL import Image

from src.agents.oracle import CompletionOracle, OracleUnavailableError
from src.audit import AuditLogger
from src.models.transaction import LinkedIdentity, LinkToken, TransactionRecord
from src.services.storage import InMemoryStorage, PersistenceError


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
TODAY = date(2026, 10, 19)

LINKED_ADDRESS = "+15550001111"
OWNER_ID = "owner-1"


class FakeOracle(CompletionOracle):
    """
    Scripted completion oracle.

    Answers come from `handler(prompt)` when given, otherwise from the
    `responses` queue. An Exception instance is raised instead of returned.
    """

    def __init__(
        self,
        responses: Optional[list] = None,
        handler: Optional[Callable[[str], Union[str, Exception]]] = None,
    ):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: list[dict] = []

    async def complete(self, prompt, *, image=None, temperature=None, max_tokens=None):
        self.calls.append({
            "prompt": prompt,
            "image": image,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.handler is not None:
            result = self.handler(prompt)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            result = OracleUnavailableError("no scripted response")

        if isinstance(result, Exception):
            raise result
        return result


def png_bytes(size: tuple[int, int] = (40, 20)) -> bytes:
    """A small, valid PNG."""
    buffer = BytesIO()
    Image.new("RGB", size, color=(255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


class FlakyStorage(InMemoryStorage):
    """
    In-memory store with injected write failures.

    `failing_binds` identity writes raise before changing anything;
    `fail_saves` makes every transaction insert raise.
    """

    def __init__(self, failing_binds: int = 0, fail_saves: bool = False):
        super().__init__()
        self.failing_binds = failing_binds
        self.fail_saves = fail_saves

    def _bind_identity(self, identity: LinkedIdentity) -> None:
        if self.failing_binds > 0:
            self.failing_binds -= 1
            raise PersistenceError("Failed to link identity: connection reset")
        super()._bind_identity(identity)

    async def save_transaction(self, record: TransactionRecord) -> bool:
        if self.fail_saves:
            raise PersistenceError("Failed to save transaction: store is read-only")
        return await super().save_transaction(record)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger(keep_history=True)


@pytest.fixture
def make_token() -> Callable[..., LinkToken]:
    def _make(
        code: str = "ab12",
        owner_id: str = OWNER_ID,
        expires_in: timedelta = timedelta(minutes=10),
        used_at: Optional[datetime] = None,
        default_currency: str = "USD",
    ) -> LinkToken:
        return LinkToken(
            code=code,
            owner_id=owner_id,
            created_at=NOW - timedelta(minutes=1),
            expires_at=NOW + expires_in,
            used_at=used_at,
            default_currency=default_currency,
        )
    return _make


@pytest.fixture
async def linked_storage(storage: InMemoryStorage) -> InMemoryStorage:
    """Store with LINKED_ADDRESS already linked to OWNER_ID (USD)."""
    await storage.upsert_linked_identity(
        LinkedIdentity(
            owner_id=OWNER_ID,
            messaging_address=LINKED_ADDRESS,
            linked_at=NOW,
            currency="USD",
        )
    )
    return storage
