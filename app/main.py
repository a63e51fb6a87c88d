"""
Webhook Entry Point for Spenly Chat Intake

A thin FastAPI app in front of the message pipeline. Twilio posts every
WhatsApp message here; we answer the webhook with an empty TwiML document
and deliver the actual reply through the REST API.

DESIGN PRINCIPLES:
1. A domain failure is never a transport failure: once a request is
   authenticated, the answer is always 200 with empty TwiML
2. Requests without a valid Twilio signature get 403
3. Missing relay credentials stop the app at startup

Run with:
    uvicorn app.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request, Response
from pydantic import ValidationError

from src.audit import create_correlation_id
from src.config import validate_all_settings
from src.orchestrator import MessagePipeline, create_app_components
from src.services.messaging import RelayDeliveryError, TwilioRelay
from src.services.storage import DatabaseClient


logger = structlog.get_logger("spenly.webhook")

WEBHOOK_PATH = "/api/whatsapp/webhook"


def create_app(
    pipeline: Optional[MessagePipeline] = None,
    relay: Optional[TwilioRelay] = None,
    db_client: Optional[DatabaseClient] = None,
) -> FastAPI:
    """
    Build the webhook app.

    Components that are not passed in are created at startup from the
    environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.relay is None:
            # Raises MissingConfigurationError without TWILIO_* settings
            app.state.relay = TwilioRelay()
        if app.state.pipeline is None:
            app.state.pipeline, app.state.db_client = create_app_components(
                media_auth=app.state.relay.media_auth,
            )
        logger.info("webhook_started", store="sql" if app.state.db_client else "memory")
        yield
        if app.state.db_client is not None:
            await app.state.db_client.close()

    app = FastAPI(title="Spenly Chat Intake", version="1.0.0", lifespan=lifespan)
    app.state.pipeline = pipeline
    app.state.relay = relay
    app.state.db_client = db_client

    @app.post(WEBHOOK_PATH)
    async def whatsapp_webhook(request: Request) -> Response:
        relay: TwilioRelay = request.app.state.relay
        pipeline: MessagePipeline = request.app.state.pipeline

        form = await request.form()
        params = {key: value for key, value in form.items() if isinstance(value, str)}

        signature = request.headers.get("X-Twilio-Signature")
        if not relay.is_valid_request(str(request.url), params, signature):
            logger.warning("webhook_signature_rejected")
            return Response(status_code=403)

        acknowledgement = Response(content=relay.empty_response(), media_type="application/xml")

        try:
            inbound = relay.parse_inbound(params)
        except ValidationError as e:
            logger.warning("webhook_payload_invalid", errors=e.error_count())
            return acknowledgement

        correlation_id = create_correlation_id()
        reply = await pipeline.handle_message(inbound, correlation_id=correlation_id)

        try:
            await relay.send_reply(inbound.sender_address, reply.text)
        except RelayDeliveryError as e:
            await pipeline.audit_logger.log_reply_delivery_failed(
                messaging_address=inbound.sender_address,
                error_message=str(e),
                correlation_id=correlation_id,
            )

        return acknowledgement

    @app.get("/health")
    async def health() -> dict:
        results = validate_all_settings()
        return {
            "status": "ok",
            "configured": {
                name: value for name, value in results.items() if isinstance(value, bool)
            },
        }

    return app


app = create_app()
