"""
Main Orchestrator for Spenly Chat Intake

This module ties together all the components and defines the per-message
flow:

    inbound message
      -> link code?           -> Link Token Verifier -> link reply
      -> sender not linked?   -> "please link" reply
      -> attachment?          -> image transaction
      -> Intent Classifier
           greeting/question  -> conversational reply
           transaction        -> parse -> categorize -> persist -> confirm

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every message gets exactly one reply, whatever fails
- Nothing is persisted without a positive amount
- Every step is audited under one correlation ID per message
- No state is kept between messages except the linked identity
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from src.agents import (
    AIExtractionClient,
    CategoryResolver,
    CompletionOracle,
    ConversationResponder,
    ExtractionFailedError,
    GeminiOracle,
    HeuristicIntentClassifier,
    IntentClassifier,
    OracleIntentClassifier,
    ResilientCall,
    format_confirmation,
)
from src.agents import replies
from src.audit import AuditLogger, create_correlation_id
from src.config import get_settings
from src.linking import LinkTokenVerifier, normalize_link_code
from src.models.transaction import (
    AssistantReply,
    InboundMessage,
    Intent,
    LinkedIdentity,
    ParsedTransaction,
    TransactionRecord,
    TransactionSource,
)
from src.parsing import parse_fallback
from src.services.image import AttachmentFetcher
from src.services.storage import (
    CategoryStorageInterface,
    DatabaseClient,
    InMemoryStorage,
    LinkStorageInterface,
    SqlCategoryStorage,
    SqlLinkStorage,
    SqlTransactionStorage,
    StorageError,
    TransactionStorageInterface,
)


logger = structlog.get_logger("spenly.pipeline")


class NotLinkedError(Exception):
    """The sender's messaging address is not linked to an account."""

    def __init__(self, messaging_address: str):
        self.messaging_address = messaging_address
        super().__init__(f"Address is not linked: {messaging_address}")


class NoAmountDetectedError(Exception):
    """A transaction was parsed but carries no positive amount."""
    pass


class MessagePipeline:
    """
    Orchestrates one inbound chat message end to end.

    Components are injected; anything left out gets its deterministic
    default, so a pipeline built with storage only still works (without
    the oracle).
    """

    def __init__(
        self,
        link_storage: LinkStorageInterface,
        transaction_storage: TransactionStorageInterface,
        category_storage: CategoryStorageInterface,
        oracle: Optional[CompletionOracle] = None,
        fetcher: Optional[AttachmentFetcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_currency: str = "USD",
        oracle_timeout_seconds: float = 15.0,
    ):
        self._link_storage = link_storage
        self._transaction_storage = transaction_storage
        self._category_storage = category_storage
        self._audit_logger = audit_logger or AuditLogger()
        self._default_currency = default_currency.upper()

        def call(capability: str) -> ResilientCall:
            return ResilientCall(capability, oracle_timeout_seconds, self._audit_logger)

        self._verifier = LinkTokenVerifier(link_storage)
        self._intent_classifier = IntentClassifier(
            oracle_classifier=OracleIntentClassifier(oracle) if oracle else None,
            heuristic_classifier=HeuristicIntentClassifier(),
            resilient_call=call("intent"),
        )
        self._extraction_client = AIExtractionClient(oracle, fetcher) if oracle else None
        self._extraction_call = call("extraction")
        self._category_resolver = CategoryResolver(oracle, call("category"))
        self._responder = ConversationResponder(oracle, call("conversation"))

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    async def handle_message(
        self,
        inbound: InboundMessage,
        correlation_id: Optional[UUID] = None,
        today: Optional[date] = None,
    ) -> AssistantReply:
        """
        Run the full pipeline for one message.

        Never raises: any unexpected failure becomes a generic apology.
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            return await self._handle(inbound, correlation_id, today)
        except Exception as e:
            logger.exception(
                "pipeline_failed",
                sender=inbound.sender_address,
                correlation_id=str(correlation_id),
            )
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return AssistantReply(text=replies.GENERIC_ERROR, outcome="error")

    async def _handle(
        self,
        inbound: InboundMessage,
        correlation_id: UUID,
        today: Optional[date],
    ) -> AssistantReply:
        await self._audit_logger.log_message_received(
            sender_address=inbound.sender_address,
            body_text=inbound.body_text,
            has_attachment=inbound.has_attachment,
            correlation_id=correlation_id,
        )

        code = normalize_link_code(inbound.body_text)
        if code and not inbound.has_attachment:
            return await self._handle_link(code, inbound.sender_address, correlation_id)

        try:
            identity = await self._require_identity(inbound.sender_address)
        except NotLinkedError:
            await self._audit_logger.log_not_linked(inbound.sender_address, correlation_id)
            return AssistantReply(text=replies.NOT_LINKED, outcome="not_linked")

        # Attachments bypass text classification
        if inbound.has_attachment:
            return await self._handle_transaction(
                inbound, identity, TransactionSource.IMAGE, correlation_id, today
            )

        intent = await self._intent_classifier.classify(
            inbound.body_text,
            is_linked=True,
            correlation_id=correlation_id,
        )
        await self._audit_logger.log_intent(intent.value, correlation_id)

        if intent == Intent.TRANSACTION:
            return await self._handle_transaction(
                inbound, identity, TransactionSource.TEXT, correlation_id, today
            )

        conversational = intent if intent == Intent.GREETING else Intent.QUESTION
        text = await self._responder.respond(
            inbound.body_text, conversational, correlation_id=correlation_id
        )
        return AssistantReply(text=text, outcome="conversation", intent=conversational)

    async def _require_identity(self, messaging_address: str) -> LinkedIdentity:
        identity = await self._link_storage.get_identity_by_address(messaging_address)
        if identity is None:
            raise NotLinkedError(messaging_address)
        return identity

    async def _handle_link(
        self,
        code: str,
        messaging_address: str,
        correlation_id: UUID,
    ) -> AssistantReply:
        try:
            outcome = await self._verifier.verify_and_link(code, messaging_address)
        except StorageError as e:
            await self._audit_logger.log_external_service_error(
                service="database",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return AssistantReply(text=replies.LINK_FAILED, outcome="error", intent=Intent.LINK)

        if outcome.is_linked:
            await self._audit_logger.log_link_succeeded(
                owner_id=outcome.owner_id,
                messaging_address=messaging_address,
                correlation_id=correlation_id,
            )
            return AssistantReply(
                text=replies.link_reply(outcome.status),
                outcome="linked",
                intent=Intent.LINK,
            )

        await self._audit_logger.log_link_rejected(
            messaging_address=messaging_address,
            status=outcome.status.value,
            correlation_id=correlation_id,
        )
        return AssistantReply(
            text=replies.link_reply(outcome.status),
            outcome="link_rejected",
            intent=Intent.LINK,
        )

    async def _parse(
        self,
        inbound: InboundMessage,
        source: TransactionSource,
        currency: str,
        correlation_id: UUID,
        today: Optional[date],
    ) -> ParsedTransaction:
        """
        Text: oracle first, deterministic parser second.
        Image: oracle only (ExtractionFailedError on failure).
        """
        if source == TransactionSource.IMAGE:
            if self._extraction_client is None:
                raise ExtractionFailedError("Receipt reading needs the oracle, which is not configured")
            return await self._extraction_client.extract(inbound, source, currency, today=today)

        primary = None
        if self._extraction_client is not None:
            primary = lambda: self._extraction_client.extract(inbound, source, currency, today=today)

        return await self._extraction_call.run(
            primary=primary,
            fallback=lambda: parse_fallback(inbound.body_text, currency, today=today),
            correlation_id=correlation_id,
        )

    @staticmethod
    def _require_amount(parsed: ParsedTransaction) -> None:
        if not parsed.has_amount:
            raise NoAmountDetectedError(f"No positive amount (got {parsed.amount})")

    async def _handle_transaction(
        self,
        inbound: InboundMessage,
        identity: LinkedIdentity,
        source: TransactionSource,
        correlation_id: UUID,
        today: Optional[date],
    ) -> AssistantReply:
        currency = identity.currency or self._default_currency

        # Parsing
        try:
            parsed = await self._parse(inbound, source, currency, correlation_id, today)
        except ExtractionFailedError as e:
            await self._audit_logger.log_extraction_failed(
                source=source.value,
                reason=str(e),
                correlation_id=correlation_id,
            )
            return AssistantReply(
                text=replies.RECEIPT_UNREADABLE,
                outcome="extraction_failed",
                intent=Intent.TRANSACTION,
            )

        try:
            self._require_amount(parsed)
        except NoAmountDetectedError:
            await self._audit_logger.log_no_amount(source.value, correlation_id)
            return AssistantReply(
                text=replies.NO_AMOUNT,
                outcome="no_amount",
                intent=Intent.TRANSACTION,
            )

        # Categorizing
        try:
            categories = await self._category_storage.list_categories(identity.owner_id)
        except StorageError as e:
            logger.warning(
                "categories_unavailable",
                owner_id=identity.owner_id,
                error=str(e),
            )
            categories = []

        category = await self._category_resolver.resolve_category(
            parsed.vendor,
            parsed.note,
            categories,
            correlation_id=correlation_id,
        )
        await self._audit_logger.log_category_resolved(category, len(categories), correlation_id)

        # Persisting
        record = TransactionRecord.from_parsed(
            parsed,
            owner_id=identity.owner_id,
            category=category,
            attachment_reference=inbound.attachment_url if source == TransactionSource.IMAGE else None,
        )
        try:
            await self._transaction_storage.save_transaction(record)
        except StorageError as e:
            await self._audit_logger.log_save_failed(
                owner_id=identity.owner_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return AssistantReply(
                text=replies.SAVE_FAILED,
                outcome="persistence_failed",
                intent=Intent.TRANSACTION,
            )

        await self._audit_logger.log_transaction_saved(
            transaction_id=record.id,
            owner_id=record.owner_id,
            vendor=record.vendor,
            amount=str(record.amount),
            currency=record.currency,
            correlation_id=correlation_id,
        )

        # Replying
        return AssistantReply(
            text=format_confirmation(record),
            outcome="saved",
            intent=Intent.TRANSACTION,
            transaction=record,
        )


def create_app_components(
    use_storage: bool = True,
    use_oracle: bool = True,
    media_auth: Optional[tuple[str, str]] = None,
) -> tuple[MessagePipeline, Optional[DatabaseClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the relational store.
                    Set to False for running without a database.
        use_oracle: Whether to use the Gemini oracle.
        media_auth: Credentials for downloading relay-hosted attachments.

    Returns:
        (pipeline, db_client). db_client is None when the in-memory
        store is used.
    """
    settings = get_settings()
    app_settings = settings.app
    audit_logger = AuditLogger()

    db_client = None
    link_storage: LinkStorageInterface
    transaction_storage: TransactionStorageInterface
    category_storage: CategoryStorageInterface

    if use_storage:
        try:
            db_client = DatabaseClient(settings.database)
        except ValidationError as e:
            # Database not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))

    if db_client is not None:
        link_storage = SqlLinkStorage(db_client)
        transaction_storage = SqlTransactionStorage(db_client)
        category_storage = SqlCategoryStorage(db_client)
    else:
        memory = InMemoryStorage()
        link_storage = transaction_storage = category_storage = memory
        logger.warning("using_in_memory_storage")

    oracle = None
    oracle_timeout_seconds = 15.0
    if use_oracle:
        try:
            gemini_settings = settings.gemini
            oracle = GeminiOracle(gemini_settings)
            oracle_timeout_seconds = gemini_settings.timeout_seconds
        except ValidationError as e:
            # Oracle not configured - deterministic pipeline only
            logger.warning("oracle_not_configured", error=str(e))

    fetcher = AttachmentFetcher(app_settings, auth=media_auth)

    pipeline = MessagePipeline(
        link_storage=link_storage,
        transaction_storage=transaction_storage,
        category_storage=category_storage,
        oracle=oracle,
        fetcher=fetcher,
        audit_logger=audit_logger,
        default_currency=app_settings.default_currency,
        oracle_timeout_seconds=oracle_timeout_seconds,
    )

    return pipeline, db_client
