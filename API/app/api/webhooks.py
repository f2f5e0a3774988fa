import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.core.errors import WebhookSignatureError, error_response
from app.core.identity_provider import IdentityProvider, get_identity_provider
from app.core.logging import DOMAIN_WEBHOOK, get_domain_logger
from app.core.settings import settings
from app.core.webhook_signature import SIGNATURE_HEADER, verify_signature
from app.identity.webhook_service import Outcome, WebhookService
from app.schemas.identity import WebhookEnvelope, parse_event

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = get_domain_logger(__name__, DOMAIN_WEBHOOK)

_OUTCOME_MESSAGES = {
    Outcome.APPLIED: "Webhook processed successfully",
    Outcome.ABSORBED: "Webhook acknowledged",
    Outcome.IGNORED: "Webhook event type not handled",
}


def get_webhook_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> WebhookService:
    return WebhookService(session_factory, identity_provider)


@router.post("/workos")
async def receive_workos_webhook(request: Request, service: WebhookService = Depends(get_webhook_service)):
    secret = settings.workos_webhook_secret
    if not secret:
        logger.error("Webhook secret not configured; rejecting delivery")
        return error_response(
            request, code="webhook_not_configured", message="Webhook secret not configured", status_code=503
        )

    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Webhook delivery without signature header")
        return error_response(request, code="invalid_signature", message="Missing signature", status_code=401)
    try:
        verify_signature(
            signature,
            payload,
            secret,
            tolerance_seconds=settings.webhook_timestamp_tolerance_seconds,
        )
    except WebhookSignatureError as exc:
        logger.warning("Webhook signature rejected | reason=%s", exc)
        return error_response(request, code="invalid_signature", message="Invalid signature", status_code=401)

    try:
        envelope = WebhookEnvelope.model_validate(json.loads(payload))
        event = parse_event(envelope)
    except (ValueError, ValidationError) as exc:
        logger.warning("Malformed webhook payload | error=%s", exc)
        return error_response(request, code="invalid_payload", message="Invalid webhook payload", status_code=400)

    try:
        result = await service.process_event(event)
    except Exception:
        # Non-2xx makes the provider redeliver. Details stay in the log.
        logger.exception("Webhook processing failed | event_id=%s type=%s", event.id, event.type)
        return error_response(
            request,
            code="webhook_processing_failed",
            message="Webhook processing failed",
            status_code=500,
            extra={"eventId": event.id},
        )

    return {"success": True, "message": _OUTCOME_MESSAGES[result.outcome], "eventId": result.event_id}


@router.get("/workos")
async def webhook_health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "webhook-handler",
    }
