"""
Relational Storage Implementation (SQLAlchemy, async)

DESIGN DECISION: We use SQLAlchemy Core with the async engine because:
1. The same code runs on PostgreSQL (asyncpg) and SQLite (aiosqlite)
2. Parameterized queries everywhere, no string-built SQL
3. Dialect upserts (INSERT ... ON CONFLICT) are available on both

Table layout (shared with the companion app's services):
- link_tokens: one-time linking codes
- linked_identities: messaging address <-> companion account
- transactions: parsed expenses waiting for sync
- user_categories: the user's synced category set

The engine (and its connection pool) is created on first use and the schema
is created once per process, behind an asyncio.Lock.
"""

import asyncio
from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.config import DatabaseSettings, get_settings
from src.models.transaction import (
    CategoryKind,
    LinkedIdentity,
    LinkToken,
    TransactionRecord,
    UserCategory,
    ensure_aware,
)
from src.services.storage.interface import (
    CategoryStorageInterface,
    LinkStorageInterface,
    PersistenceError,
    StorageConnectionError,
    StorageError,
    TransactionStorageInterface,
)


logger = structlog.get_logger("spenly.storage")


metadata = MetaData()

link_tokens = Table(
    "link_tokens",
    metadata,
    Column("code", String(255), primary_key=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("used_at", DateTime(timezone=True), nullable=True),
    Column("default_currency", String(3), nullable=False, default="USD"),
)

linked_identities = Table(
    "linked_identities",
    metadata,
    Column("owner_id", String(255), primary_key=True),
    Column("messaging_address", String(255), nullable=False, unique=True),
    Column("linked_at", DateTime(timezone=True), nullable=False),
    Column("currency", String(3), nullable=False, default="USD"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("vendor", String(255), nullable=False),
    Column("note", Text, nullable=False, default=""),
    Column("category", String(255), nullable=False),
    Column("transaction_date", Date, nullable=False),
    Column("source", String(10), nullable=False),
    Column("message_kind", String(10), nullable=False),
    Column("attachment_reference", Text, nullable=True),
    Column("sync_status", String(20), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

user_categories = Table(
    "user_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(255), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("kind", String(10), nullable=False),
    Column("is_custom", Boolean, nullable=False, default=False),
    UniqueConstraint("owner_id", "name", "kind", name="uq_user_category"),
)


_read_retry = retry(
    retry=retry_if_exception_type(StorageConnectionError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store every timestamp as UTC (SQLite drops the offset)."""
    value = ensure_aware(value)
    return value.astimezone(timezone.utc) if value is not None else None


class DatabaseClient:
    """
    Low-level database wrapper.

    Owns the lazily created async engine and the one-time schema guard.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._engine: Optional[AsyncEngine] = None
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return self._settings.url

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async engine."""
        if self._engine is None:
            kwargs = {"echo": self._settings.echo}
            if not self.url.startswith("sqlite"):
                kwargs["pool_size"] = self._settings.pool_size
                kwargs["pool_timeout"] = self._settings.pool_timeout_seconds
                kwargs["pool_pre_ping"] = True
            self._engine = create_async_engine(self.url, **kwargs)
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageConnectionError(f"Failed to create schema: {e}") from e

    async def ensure_schema(self) -> None:
        """Create missing tables once per process."""
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            await self._create_schema()
            self._schema_ready = True
            logger.info("schema_ready", dialect=self.dialect_name)

    async def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._schema_ready = False


class SqlLinkStorage(LinkStorageInterface):
    """
    SQL implementation of link token and identity storage.

    Token consumption is a conditional UPDATE run in the same transaction
    as the identity upsert: concurrent deliveries of the same code consume
    it at most once, and a failed upsert rolls the consumption back.

    Schema creation has its own retry, so public reads ensure the schema
    first and only the query itself runs under _read_retry.
    """

    def __init__(self, client: Optional[DatabaseClient] = None):
        self._client = client or DatabaseClient()

    async def get_link_token(self, code: str) -> Optional[LinkToken]:
        await self._client.ensure_schema()
        return await self._fetch_link_token(code)

    @_read_retry
    async def _fetch_link_token(self, code: str) -> Optional[LinkToken]:
        try:
            async with self._client.engine.connect() as conn:
                result = await conn.execute(
                    select(link_tokens).where(link_tokens.c.code == code.lower())
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StorageConnectionError(f"Failed to get link token: {e}") from e

        if row is None:
            return None
        return LinkToken(**dict(row))

    async def consume_token_and_link(
        self,
        code: str,
        identity: LinkedIdentity,
    ) -> bool:
        await self._client.ensure_schema()
        consume = (
            update(link_tokens)
            .where(
                and_(
                    link_tokens.c.code == code.lower(),
                    link_tokens.c.used_at.is_(None),
                )
            )
            .values(used_at=_to_utc(identity.linked_at))
        )
        try:
            async with self._client.engine.begin() as conn:
                result = await conn.execute(consume)
                if result.rowcount != 1:
                    return False
                await self._bind_identity(conn, identity)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to link identity: {e}") from e
        return True

    async def upsert_linked_identity(self, identity: LinkedIdentity) -> bool:
        """Bind an identity without a token (used by tooling and tests)."""
        await self._client.ensure_schema()
        try:
            async with self._client.engine.begin() as conn:
                await self._bind_identity(conn, identity)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to link identity: {e}") from e
        return True

    async def _bind_identity(self, conn, identity: LinkedIdentity) -> None:
        # The address may only belong to one owner
        await conn.execute(
            delete(linked_identities).where(
                and_(
                    linked_identities.c.messaging_address == identity.messaging_address,
                    linked_identities.c.owner_id != identity.owner_id,
                )
            )
        )
        await self._upsert(conn, {
            "owner_id": identity.owner_id,
            "messaging_address": identity.messaging_address,
            "linked_at": _to_utc(identity.linked_at),
            "currency": identity.currency,
        })

    async def _upsert(self, conn, values: dict) -> None:
        changes = {
            "messaging_address": values["messaging_address"],
            "linked_at": values["linked_at"],
            "currency": values["currency"],
        }
        dialect = self._client.dialect_name

        if dialect in ("postgresql", "sqlite"):
            dialect_insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            statement = dialect_insert(linked_identities).values(**values)
            statement = statement.on_conflict_do_update(
                index_elements=[linked_identities.c.owner_id],
                set_=changes,
            )
            await conn.execute(statement)
            return

        result = await conn.execute(
            update(linked_identities)
            .where(linked_identities.c.owner_id == values["owner_id"])
            .values(**changes)
        )
        if result.rowcount == 0:
            await conn.execute(insert(linked_identities).values(**values))

    async def get_identity_by_address(
        self,
        messaging_address: str,
    ) -> Optional[LinkedIdentity]:
        await self._client.ensure_schema()
        return await self._fetch_identity(messaging_address)

    @_read_retry
    async def _fetch_identity(self, messaging_address: str) -> Optional[LinkedIdentity]:
        try:
            async with self._client.engine.connect() as conn:
                result = await conn.execute(
                    select(linked_identities).where(
                        linked_identities.c.messaging_address == messaging_address
                    )
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StorageConnectionError(f"Failed to look up identity: {e}") from e

        if row is None:
            return None
        return LinkedIdentity(**dict(row))

    async def add_link_token(self, token: LinkToken) -> None:
        """Insert a token (issuing codes is the companion app's job; used by tooling and tests)."""
        await self._client.ensure_schema()
        try:
            async with self._client.engine.begin() as conn:
                await conn.execute(
                    insert(link_tokens).values(
                        code=token.code,
                        owner_id=token.owner_id,
                        created_at=_to_utc(token.created_at),
                        expires_at=_to_utc(token.expires_at),
                        used_at=_to_utc(token.used_at),
                        default_currency=token.default_currency,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to add link token: {e}") from e


class SqlTransactionStorage(TransactionStorageInterface):
    """
    SQL implementation of transaction storage.

    Inserts are never retried: a retry after an ambiguous failure could
    write the same expense twice.
    """

    def __init__(self, client: Optional[DatabaseClient] = None):
        self._client = client or DatabaseClient()

    async def save_transaction(self, record: TransactionRecord) -> bool:
        try:
            await self._client.ensure_schema()
            async with self._client.engine.begin() as conn:
                await conn.execute(
                    insert(transactions).values(
                        id=record.id,
                        owner_id=record.owner_id,
                        amount=record.amount,
                        currency=record.currency,
                        vendor=record.vendor,
                        note=record.note,
                        category=record.category,
                        transaction_date=record.transaction_date,
                        source=record.source.value,
                        message_kind=record.message_kind.value,
                        attachment_reference=record.attachment_reference,
                        sync_status=record.sync_status.value,
                        created_at=_to_utc(record.created_at),
                    )
                )
        except (SQLAlchemyError, StorageError) as e:
            raise PersistenceError(f"Failed to save transaction: {e}") from e
        return True


class SqlCategoryStorage(CategoryStorageInterface):
    """
    SQL implementation of the (read-only) category set.
    """

    def __init__(self, client: Optional[DatabaseClient] = None):
        self._client = client or DatabaseClient()

    async def list_categories(self, owner_id: str) -> list[UserCategory]:
        await self._client.ensure_schema()
        rows = await self._fetch_categories(owner_id)

        categories = []
        for row in rows:
            kind = (row["kind"] or "").strip().lower()
            if kind not in {k.value for k in CategoryKind}:
                logger.warning("unknown_category_kind", owner_id=owner_id, kind=row["kind"])
                continue
            categories.append(
                UserCategory(name=row["name"], kind=kind, is_custom=bool(row["is_custom"]))
            )
        return categories

    @_read_retry
    async def _fetch_categories(self, owner_id: str) -> list:
        try:
            async with self._client.engine.connect() as conn:
                result = await conn.execute(
                    select(
                        user_categories.c.name,
                        user_categories.c.kind,
                        user_categories.c.is_custom,
                    )
                    .where(user_categories.c.owner_id == owner_id)
                    .order_by(user_categories.c.id)
                )
                return result.mappings().all()
        except SQLAlchemyError as e:
            raise StorageConnectionError(f"Failed to list categories: {e}") from e

    async def add_categories(
        self,
        owner_id: str,
        categories: Iterable[UserCategory],
    ) -> None:
        """Insert categories in order (syncing is the companion app's job; used by tooling and tests)."""
        await self._client.ensure_schema()
        rows = [
            {
                "owner_id": owner_id,
                "name": category.name,
                "kind": category.kind.value,
                "is_custom": category.is_custom,
            }
            for category in categories
        ]
        if not rows:
            return
        try:
            async with self._client.engine.begin() as conn:
                for row in rows:
                    await conn.execute(insert(user_categories).values(**row))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to add categories: {e}") from e
