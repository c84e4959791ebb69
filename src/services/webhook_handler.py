"""
Card event handler - applies one provider webhook callback.

The payload only tells us which card (or list) changed and how; the card is
always fetched fresh and pushed through the same step as reconciliation.
Nothing here raises for an event we cannot place: it is acknowledged as skipped
so the provider neither retries nor disables the subscription. Provider and
database errors propagate to the route, which logs and still acknowledges.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.schemas.api_responses import WebhookAck
from src.schemas.webhook_payloads import (
    CARD_ACTIONS,
    DELETE_CARD_ACTIONS,
    LIST_ACTIONS,
    TrelloWebhookPayload,
)
from src.services.batch_executor import OUTCOME_CREATED, OUTCOME_DELETED
from src.services.board_config import BoardConfig, find_board_config_by_board
from src.services.lead_gateway import delete_lead, delete_leads_in_list
from src.services.reconciliation import sync_card

logger = logging.getLogger(__name__)


async def resolve_event_config(
    db: AsyncSession, payload: TrelloWebhookPayload
) -> BoardConfig | None:
    """Tenant configuration for the board named in the payload."""
    return await find_board_config_by_board(db, payload.board_id)


async def _handle_list_event(
    db: AsyncSession, config: BoardConfig, payload: TrelloWebhookPayload
) -> WebhookAck:
    action = payload.action_type
    list_id = payload.list_id
    if payload.list_closed and list_id:
        deleted = await delete_leads_in_list(db, config.tenant_id, list_id)
        logger.info(
            "List %s archived on board %s: %d leads deleted",
            list_id, config.board_id, deleted,
        )
        return WebhookAck(action=action, deleted=deleted > 0, list_id=list_id, leads_deleted=deleted)

    # New or renamed lists are picked up by the next full sync
    return WebhookAck(action=action, list_id=list_id)


async def handle_card_event(db: AsyncSession, payload: TrelloWebhookPayload) -> WebhookAck:
    """Route one callback to a lead upsert or delete."""
    action = payload.action_type
    card_id = payload.card_id

    if action in LIST_ACTIONS and not card_id:
        config = await resolve_event_config(db, payload)
        if config is None:
            return WebhookAck(skipped=True, reason="Board not configured", action=action)
        return _for_tenant(await _handle_list_event(db, config, payload), config)

    if not payload.is_card_action and not card_id:
        return WebhookAck(skipped=True, reason="Not a card action", action=action)

    if not card_id:
        logger.warning("Card action %s without a card id", action)
        return WebhookAck(skipped=True, reason="No card ID", action=action)

    config = await resolve_event_config(db, payload)
    if config is None:
        logger.warning("Webhook for unconfigured board %s ignored", payload.board_id)
        return WebhookAck(
            skipped=True, reason="Board not configured", action=action, card_id=card_id,
        )

    return _for_tenant(await _handle_card_action(db, config, payload), config)


def _for_tenant(ack: WebhookAck, config: BoardConfig) -> WebhookAck:
    ack.tenant_id = str(config.tenant_id)
    return ack


async def _handle_card_action(
    db: AsyncSession, config: BoardConfig, payload: TrelloWebhookPayload
) -> WebhookAck:
    action = payload.action_type
    card_id = payload.card_id

    if action in DELETE_CARD_ACTIONS or (action == "updateCard" and payload.card_closed):
        deleted = await delete_lead(db, config.tenant_id, card_id)
        logger.info(
            "Card %s %s on board %s: lead deleted=%s",
            card_id, "deleted" if action in DELETE_CARD_ACTIONS else "archived",
            config.board_id, deleted,
        )
        return WebhookAck(action=action, card_id=card_id, deleted=deleted)

    if action not in CARD_ACTIONS:
        logger.debug("Ignoring action %s for card %s", action, card_id)
        return WebhookAck(skipped=True, reason="Unhandled action", action=action, card_id=card_id)

    result = await sync_card(db, config, card_id)
    logger.info(
        "Webhook %s card=%s outcome=%s lead=%s",
        action, card_id, result.outcome, str(result.lead_id)[:8] if result.lead_id else None,
    )
    return WebhookAck(
        action=action,
        card_id=card_id,
        lead_id=str(result.lead_id) if result.lead_id else None,
        created=result.outcome == OUTCOME_CREATED,
        deleted=result.outcome == OUTCOME_DELETED,
        skipped=result.lead_id is None and result.outcome != OUTCOME_DELETED,
        reason=result.reason,
    )
