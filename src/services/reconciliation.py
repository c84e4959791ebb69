"""
Reconciliation job - re-derives the tenant's board leads from the provider.

Two entry points share the same per-card step (sync_card), which the webhook
handler also uses:
- run_quick_sync: cards active in the last N minutes, capped, short deadline.
- run_full_sync: every open card, long deadline, list auto-mapping and
  orphan cleanup.

Provider fetches run concurrently inside a batch; database writes share one
session and are serialized with an asyncio.Lock. Writes are flushed; the
caller commits. The last_sync_at checkpoint moves on every run, truncated
or not.
"""
import asyncio
import logging
import uuid
from contextlib import nullcontext
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.integrations.trello import TrelloClient
from src.models.event_log import EventLog
from src.schemas.api_responses import SyncSummary
from src.schemas.trello import CardSummary, TrelloCard
from src.services import board_config as board_config_store
from src.services.batch_executor import (
    BatchReport,
    OUTCOME_CREATED,
    OUTCOME_DELETED,
    OUTCOME_SKIPPED,
    OUTCOME_UPDATED,
    run_batched,
)
from src.services.board_config import BoardConfig
from src.services.card_mapper import (
    DeleteCard,
    MappedCard,
    SellerCandidate,
    map_card,
    status_for_list_name,
)
from src.services.lead_gateway import (
    delete_lead,
    delete_orphaned_leads,
    leads_missing_list_name,
    load_seller_candidates,
    upsert_lead,
)
from src.utils.alerting import AlertType, send_alert
from src.utils.metrics import Timer

logger = logging.getLogger(__name__)

ACTION_QUICK = "board_sync_quick"
ACTION_FULL = "board_sync_full"
ACTION_LIST_NAMES = "list_names_backfill"


class CardSyncResult(BaseModel):
    card_id: str
    outcome: str
    lead_id: Optional[uuid.UUID] = None
    reason: Optional[str] = None


async def sync_card(
    db: AsyncSession,
    config: BoardConfig,
    card_id: str,
    client: Optional[TrelloClient] = None,
    sellers: Optional[list[SellerCandidate]] = None,
    db_lock=None,
) -> CardSyncResult:
    """
    Fetch one card fresh from the provider and apply it to the tenant's leads.
    A card that is archived or no longer exists removes the lead.
    Provider errors propagate to the caller.

    The writes run in a savepoint: a card that fails to flush rolls back alone
    and leaves the shared session usable for the rest of the run.
    """
    client = client or config.client()
    card = await client.get_card(card_id)

    async with db_lock or nullcontext():
        async with db.begin_nested():
            return await _apply_card(db, config, card_id, card, sellers)


async def _apply_card(
    db: AsyncSession,
    config: BoardConfig,
    card_id: str,
    card: Optional[TrelloCard],
    sellers: Optional[list[SellerCandidate]],
) -> CardSyncResult:
    if card is None:
        deleted = await delete_lead(db, config.tenant_id, card_id)
        logger.info("Card %s not found at provider, lead deleted=%s", card_id, deleted)
        return CardSyncResult(
            card_id=card_id,
            outcome=OUTCOME_DELETED if deleted else OUTCOME_SKIPPED,
            reason="card not found",
        )

    if sellers is None:
        sellers = await load_seller_candidates(db, config.tenant_id)

    mapping = map_card(card, config, sellers)

    if isinstance(mapping, DeleteCard):
        deleted = await delete_lead(db, config.tenant_id, mapping.external_id)
        return CardSyncResult(
            card_id=card_id,
            outcome=OUTCOME_DELETED if deleted else OUTCOME_SKIPPED,
            reason=mapping.reason,
        )

    if not isinstance(mapping, MappedCard):
        return CardSyncResult(card_id=card_id, outcome=OUTCOME_SKIPPED, reason=mapping.reason)

    result = await upsert_lead(db, config.tenant_id, mapping.external_id, mapping.fields)
    return CardSyncResult(
        card_id=card_id,
        outcome=OUTCOME_CREATED if result.created else OUTCOME_UPDATED,
        lead_id=result.lead_id,
    )


def select_recent_cards(
    cards: list[CardSummary],
    window_minutes: int,
    max_cards: int,
    now: Optional[datetime] = None,
) -> list[CardSummary]:
    """Cards active within the window, most recent first, capped at max_cards."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=window_minutes)
    recent = [
        card for card in cards
        if card.date_last_activity is not None and card.date_last_activity >= cutoff
    ]
    recent.sort(key=lambda card: card.date_last_activity, reverse=True)
    return recent[:max(0, max_cards)]


async def _run_cards(
    db: AsyncSession,
    config: BoardConfig,
    card_ids: list[str],
    deadline_ms: int,
    concurrency: int,
    timer: Timer,
) -> BatchReport:
    client = config.client()
    sellers = await load_seller_candidates(db, config.tenant_id)
    db_lock = asyncio.Lock()

    def make_task(card_id: str):
        async def task() -> str:
            result = await sync_card(
                db, config, card_id, client=client, sellers=sellers, db_lock=db_lock,
            )
            return result.outcome
        return task

    return await run_batched(
        [make_task(card_id) for card_id in card_ids],
        concurrency=concurrency,
        deadline_ms=deadline_ms,
        started_at=timer.started_at,
    )


def _summary_from_report(report: BatchReport, cards_total: int, elapsed_ms: int) -> SyncSummary:
    return SyncSummary(
        total=report.processed,
        created=report.created,
        updated=report.updated,
        deleted=report.deleted,
        errors=report.errors,
        skipped=report.skipped,
        time_elapsed_ms=elapsed_ms,
        cards_total=cards_total,
        cards_processed=report.processed,
        timed_out=report.timed_out,
    )


async def _finish_run(
    db: AsyncSession,
    config: BoardConfig,
    action: str,
    summary: SyncSummary,
    report: BatchReport,
) -> None:
    """Move the checkpoint, write the audit row and alert on total failure."""
    await board_config_store.mark_synced(db, config.tenant_id)

    if report.all_failed:
        status = "failure"
    elif report.timed_out or report.errors:
        status = "partial"
    else:
        status = "success"

    data = summary.model_dump(by_alias=True, exclude_none=True)
    if report.error_samples:
        data["errorSamples"] = report.error_samples

    db.add(EventLog(
        tenant_id=config.tenant_id,
        action=action,
        status=status,
        duration_ms=summary.time_elapsed_ms,
        message=(
            f"{summary.cards_processed}/{summary.cards_total} cards: "
            f"{summary.created} created, {summary.updated} updated, "
            f"{summary.deleted} deleted, {summary.skipped} skipped, {summary.errors} errors"
        ),
        data=data,
    ))
    await db.flush()

    logger.info(
        "%s tenant=%s status=%s processed=%d/%d created=%d updated=%d deleted=%d "
        "skipped=%d errors=%d timed_out=%s elapsed=%dms",
        action, str(config.tenant_id)[:8], status, summary.cards_processed,
        summary.cards_total, summary.created, summary.updated, summary.deleted,
        summary.skipped, summary.errors, summary.timed_out, summary.time_elapsed_ms,
    )

    if report.all_failed:
        await send_alert(
            AlertType.BOARD_SYNC_FAILED,
            f"Every card failed during {action} for tenant {str(config.tenant_id)[:8]}",
            extra={"errors": report.errors, "sample": (report.error_samples or [""])[0]},
            scope=str(config.tenant_id),
        )


async def run_quick_sync(
    db: AsyncSession,
    config: BoardConfig,
    window_minutes: Optional[int] = None,
    max_cards: Optional[int] = None,
    deadline_ms: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> SyncSummary:
    """
    Sync cards touched in the last window_minutes.
    Failure to list the board's cards raises TrelloAPIError.
    """
    settings = get_settings()
    window_minutes = window_minutes or config.quick_sync_window_minutes
    max_cards = max_cards or config.quick_sync_max_cards
    deadline_ms = deadline_ms or settings.quick_sync_deadline_ms
    concurrency = concurrency or settings.sync_concurrency

    timer = Timer().start()
    client = config.client()
    all_cards = await client.get_board_cards(config.board_id)
    recent = select_recent_cards(all_cards, window_minutes, max_cards)

    logger.info(
        "Quick sync tenant=%s: %d of %d cards active in the last %d minutes",
        str(config.tenant_id)[:8], len(recent), len(all_cards), window_minutes,
    )

    report = await _run_cards(
        db, config, [card.id for card in recent], deadline_ms, concurrency, timer,
    )
    summary = _summary_from_report(report, len(recent), timer.stop())
    await _finish_run(db, config, ACTION_QUICK, summary, report)
    return summary


async def auto_map_lists(
    db: AsyncSession, config: BoardConfig, lists
) -> tuple[BoardConfig, int]:
    """
    Give every unmapped open list a status guessed from its name.
    Returns the updated config and the number of lists mapped.
    """
    new_entries = {
        lst.id: status_for_list_name(lst.name)
        for lst in lists
        if lst.id not in config.list_status_mapping
    }
    if not new_entries:
        return config, 0

    await board_config_store.save_list_mappings(db, config.tenant_id, status_mapping=new_entries)
    logger.info(
        "Auto-mapped %d new lists for tenant %s: %s",
        len(new_entries), str(config.tenant_id)[:8],
        ", ".join(f"{list_id}={status}" for list_id, status in new_entries.items()),
    )
    updated = config.model_copy(update={
        "list_status_mapping": {**config.list_status_mapping, **new_entries},
    })
    return updated, len(new_entries)


async def run_full_sync(
    db: AsyncSession,
    config: BoardConfig,
    deadline_ms: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> SyncSummary:
    """
    Sync every open card, then delete leads whose card or list is gone.
    Orphan cleanup only runs when the card pass completed within the deadline.
    """
    settings = get_settings()
    deadline_ms = deadline_ms or settings.full_sync_deadline_ms
    concurrency = concurrency or settings.sync_concurrency

    timer = Timer().start()
    client = config.client()
    all_cards = await client.get_board_cards(config.board_id)
    lists = await client.get_board_lists(config.board_id)

    config, lists_mapped = await auto_map_lists(db, config, lists)

    logger.info(
        "Full sync tenant=%s: %d open cards in %d open lists",
        str(config.tenant_id)[:8], len(all_cards), len(lists),
    )

    report = await _run_cards(
        db, config, [card.id for card in all_cards], deadline_ms, concurrency, timer,
    )

    orphaned = 0
    if report.timed_out:
        logger.warning(
            "Full sync tenant=%s truncated, orphan cleanup skipped",
            str(config.tenant_id)[:8],
        )
    else:
        orphaned = await delete_orphaned_leads(
            db,
            config.tenant_id,
            open_card_ids=[card.id for card in all_cards],
            active_list_ids=[lst.id for lst in lists],
        )

    summary = _summary_from_report(report, len(all_cards), timer.stop())
    summary.orphaned_deleted = orphaned
    summary.lists_auto_mapped = lists_mapped
    await _finish_run(db, config, ACTION_FULL, summary, report)
    return summary


async def backfill_list_names(db: AsyncSession, config: BoardConfig) -> int:
    """Fill the denormalized list_name from the board's open lists."""
    lists = await config.client().get_board_lists(config.board_id)
    list_names = {lst.id: lst.name for lst in lists}

    leads = await leads_missing_list_name(db, config.tenant_id, list_names)
    fixed = 0
    for lead in leads:
        name = list_names.get(lead.trello_list_id)
        if name and lead.list_name != name:
            lead.list_name = name
            fixed += 1

    db.add(EventLog(
        tenant_id=config.tenant_id,
        action=ACTION_LIST_NAMES,
        status="success",
        message=f"{fixed} leads updated from {len(list_names)} open lists",
        data={"fixed": fixed, "lists": len(list_names)},
    ))
    await db.flush()
    logger.info("List names backfilled for tenant %s: %d leads", str(config.tenant_id)[:8], fixed)
    return fixed
