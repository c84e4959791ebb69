"""
Board provider webhook endpoint - receives card change callbacks.

Always answers 200: a non-2xx makes the provider retry and, after repeated
failures, disable the subscription. Problems are logged and recorded in the
webhook_events audit trail instead.

Processing layers (in order):
1. Rate limiting (per IP)
2. Signature validation (X-Trello-Webhook, when a secret is configured)
3. Audit trail (webhook_events table)
4. Card event handling
"""
import json
import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database import get_db
from src.models.webhook_event import WebhookEvent
from src.schemas.api_responses import WebhookAck
from src.schemas.webhook_payloads import TrelloWebhookPayload
from src.services.webhook_handler import handle_card_event
from src.utils.alerting import AlertType, send_alert
from src.utils.logging import get_correlation_id
from src.utils.metrics import Timer
from src.utils.rate_limiter import check_webhook_rate_limit
from src.utils.webhook_signatures import (
    SIGNATURE_HEADER,
    compute_payload_hash,
    validate_trello_signature,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])

SOURCE_TRELLO = "trello"


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _record_webhook_event(
    db: AsyncSession,
    payload: TrelloWebhookPayload,
    raw_payload: dict,
    payload_hash: str,
) -> WebhookEvent:
    """Record a webhook event in the audit trail before processing."""
    event = WebhookEvent(
        source=SOURCE_TRELLO,
        event_type=payload.action_type or "unknown",
        payload_hash=payload_hash,
        raw_payload=raw_payload,
        board_id=payload.board_id,
        card_id=payload.card_id,
        processing_status="received",
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await db.flush()
    return event


async def _complete_webhook_event(
    event: WebhookEvent,
    timer: Timer,
    status: str = "completed",
    error_message: str | None = None,
    tenant_id: str | None = None,
) -> None:
    """Update webhook event status after processing."""
    event.processing_status = status
    event.error_message = error_message
    event.processed_at = datetime.now(timezone.utc)
    event.duration_ms = timer.elapsed_ms
    if tenant_id is not None:
        event.tenant_id = uuid.UUID(tenant_id)


@router.head("/card-event")
async def card_event_head():
    """The provider sends HEAD to the callback URL when a webhook is registered."""
    return Response(status_code=200)


@router.post("/card-event", response_model=WebhookAck, response_model_exclude_none=True)
async def card_event_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Apply one card change event. Always 200."""
    timer = Timer().start()
    client_ip = _client_ip(request)

    allowed, _ = await check_webhook_rate_limit(client_ip)
    if not allowed:
        return WebhookAck(skipped=True, reason="Rate limited")

    body = await request.body()
    settings = get_settings()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not validate_trello_signature(
        settings.trello_webhook_secret, signature, body, settings.webhook_callback_url,
    ):
        logger.warning("Invalid webhook signature from ip=%s", client_ip)
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Board webhook with invalid signature from {client_ip}",
            severity="warning",
        )
        return WebhookAck(skipped=True, reason="Invalid signature")

    try:
        raw_payload = json.loads(body or b"{}")
        payload = TrelloWebhookPayload.model_validate(raw_payload)
    except (ValueError, ValidationError) as e:
        logger.warning("Unparseable webhook body from ip=%s: %s", client_ip, str(e))
        return WebhookAck(skipped=True, reason="Invalid payload")

    event_type = payload.action_type or "unknown"
    payload_hash = compute_payload_hash(body)
    event = await _record_webhook_event(db, payload, raw_payload, payload_hash)
    event.processing_status = "processing"

    try:
        ack = await handle_card_event(db, payload)
        await _complete_webhook_event(
            event, timer,
            status="skipped" if ack.skipped else "completed",
            error_message=ack.reason if ack.skipped else None,
            tenant_id=ack.tenant_id,
        )
    except Exception as e:
        logger.error(
            "Webhook %s for card %s failed after %dms: %s",
            event_type, payload.card_id, timer.elapsed_ms, str(e),
            exc_info=True,
        )
        # Discard the half-applied card, keep a failed audit row
        await db.rollback()
        event = await _record_webhook_event(db, payload, raw_payload, payload_hash)
        await _complete_webhook_event(event, timer, status="failed", error_message=str(e)[:1000])
        await send_alert(
            AlertType.WEBHOOK_PROCESSING_FAILED,
            f"Board webhook {event_type} for card {payload.card_id} failed: {e}",
            severity="warning",
        )
        return WebhookAck(
            action=event_type, card_id=payload.card_id,
            error="Error syncing card",
        )

    logger.info(
        "Webhook %s card=%s processed in %dms",
        event_type, payload.card_id, timer.stop(),
    )
    return ack
