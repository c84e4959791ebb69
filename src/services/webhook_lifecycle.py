"""
Webhook lifecycle manager - keeps exactly one active provider webhook per board.

The provider scopes registrations by credential, not by board, so repair works
on every registration the token owns:
1. resolve the board's canonical id (webhooks must target it, not the alias)
2. list all registrations of the token
3. delete registrations on our callback URL that point at another board
4. keep the first active registration on (canonical id, callback URL),
   delete duplicates and inactive ones
5. register a new webhook when none is left

A stale registration is never re-pointed in place: it is deleted and recreated.
Idempotent - running it twice in a row deletes nothing the second time.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.integrations.trello import TrelloAPIError
from src.models.event_log import EventLog
from src.schemas.api_responses import BoardWebhookSummary, WebhookRepairResult
from src.schemas.trello import TrelloWebhook
from src.services import board_config as board_config_store
from src.services.board_config import BoardConfig
from src.utils.metrics import Timer

logger = logging.getLogger(__name__)

ACTION_REPAIR = "webhook_repair"


class WebhookRegistrationError(Exception):
    """The webhook could not be brought into a registered state."""


def _normalize_url(url: Optional[str]) -> str:
    return (url or "").strip().rstrip("/")


def validate_callback_url(callback_url: str) -> str:
    """The provider only calls HTTPS URLs; ours must end in the card event path."""
    url = _normalize_url(callback_url)
    if not url.startswith("https://"):
        raise WebhookRegistrationError(f"Callback URL must use HTTPS: {callback_url}")
    path = _normalize_url(get_settings().trello_webhook_path)
    if not url.endswith(path):
        raise WebhookRegistrationError(f"Callback URL must end with {path}: {callback_url}")
    return url


def _is_our_callback(webhook: TrelloWebhook, callback_url: str) -> bool:
    return _normalize_url(webhook.callback_url) == callback_url


async def _other_tenant_aliases(db: AsyncSession, config: BoardConfig) -> set[str]:
    """Boards configured by other tenants; their registrations are never touched."""
    aliases = set()
    for other in await board_config_store.list_board_configs(db):
        if other.tenant_id != config.tenant_id:
            aliases |= other.board_aliases
    return aliases


async def repair_webhook(
    db: AsyncSession,
    config: BoardConfig,
    callback_url: Optional[str] = None,
) -> WebhookRepairResult:
    """Restore a single active registration for the tenant's board and persist its id."""
    timer = Timer().start()
    callback_url = validate_callback_url(callback_url or get_settings().webhook_callback_url)
    client = config.client()

    try:
        board = await client.get_board(config.board_id)
    except TrelloAPIError as e:
        raise WebhookRegistrationError(f"Could not resolve board {config.board_id}: {e}") from e
    if board is None:
        raise WebhookRegistrationError(f"Board {config.board_id} not found or not accessible")

    canonical_id = board.id
    if config.board_id_long != canonical_id:
        await board_config_store.set_canonical_board_id(db, config.tenant_id, canonical_id)
        logger.info(
            "Canonical board id for tenant %s: %s (configured %s)",
            str(config.tenant_id)[:8], canonical_id, config.board_id,
        )

    try:
        registrations = await client.list_token_webhooks()
    except TrelloAPIError as e:
        raise WebhookRegistrationError(f"Could not list webhooks: {e}") from e

    protected = await _other_tenant_aliases(db, config)
    to_delete: list[TrelloWebhook] = []
    kept: Optional[TrelloWebhook] = None

    for webhook in registrations:
        if not _is_our_callback(webhook, callback_url):
            continue
        if webhook.id_model == canonical_id:
            if kept is None and webhook.active:
                kept = webhook
            else:
                to_delete.append(webhook)
        elif webhook.id_model in protected:
            logger.debug("Webhook %s belongs to another tenant's board, left alone", webhook.id)
        else:
            to_delete.append(webhook)

    deleted_ids = []
    for webhook in to_delete:
        reason = "duplicate" if webhook.id_model == canonical_id and webhook.active else "stale"
        logger.info(
            "Deleting %s webhook %s (model=%s active=%s)",
            reason, webhook.id, webhook.id_model, webhook.active,
        )
        try:
            await client.delete_webhook(webhook.id)
        except TrelloAPIError as e:
            raise WebhookRegistrationError(f"Could not delete webhook {webhook.id}: {e}") from e
        deleted_ids.append(webhook.id)

    if kept is not None:
        action = "kept"
        webhook_id = kept.id
    else:
        try:
            created = await client.create_webhook(
                callback_url=callback_url,
                id_model=canonical_id,
                description=f"Board sync - {board.name or canonical_id}",
            )
        except TrelloAPIError as e:
            raise WebhookRegistrationError(f"Could not register webhook: {e}") from e
        action = "created"
        webhook_id = created.id

    await board_config_store.set_webhook_registration(db, config.tenant_id, webhook_id, callback_url)

    result = WebhookRepairResult(
        webhook_id=webhook_id,
        callback_url=callback_url,
        board_id_long=canonical_id,
        action=action,
        deleted_webhook_ids=deleted_ids,
    )
    db.add(EventLog(
        tenant_id=config.tenant_id,
        action=ACTION_REPAIR,
        status="success",
        duration_ms=timer.stop(),
        message=f"Webhook {action}: {webhook_id}, {len(deleted_ids)} removed",
        data=result.model_dump(by_alias=True),
    ))
    await db.flush()

    logger.info(
        "Webhook repair tenant=%s: %s %s, deleted=%d",
        str(config.tenant_id)[:8], action, webhook_id, len(deleted_ids),
    )
    return result


async def list_board_webhooks(
    config: BoardConfig, callback_url: Optional[str] = None
) -> list[BoardWebhookSummary]:
    """Registrations of the token that target this board or our callback URL."""
    callback_url = _normalize_url(callback_url or get_settings().webhook_callback_url)
    registrations = await config.client().list_token_webhooks()

    summaries = []
    for webhook in registrations:
        matches_board = config.matches_board(webhook.id_model)
        matches_callback = _is_our_callback(webhook, callback_url)
        if not (matches_board or matches_callback):
            continue
        summaries.append(BoardWebhookSummary(
            id=webhook.id,
            id_model=webhook.id_model,
            callback_url=webhook.callback_url,
            active=webhook.active,
            description=webhook.description,
            matches_board=matches_board,
            matches_callback=matches_callback,
        ))
    return summaries


async def remove_webhook(db: AsyncSession, config: BoardConfig, webhook_id: str) -> bool:
    """
    Delete a registration at the provider.
    The cached id is cleared when it was the tenant's registered webhook.
    """
    try:
        deleted = await config.client().delete_webhook(webhook_id)
    except TrelloAPIError as e:
        raise WebhookRegistrationError(f"Could not delete webhook {webhook_id}: {e}") from e

    if config.webhook_id == webhook_id:
        await board_config_store.clear_webhook_registration(db, config.tenant_id)
        logger.info("Cleared webhook registration for tenant %s", str(config.tenant_id)[:8])
    return deleted
