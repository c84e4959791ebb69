"""
Repair the provider webhook registration of one or every tenant.

Replaces the per-incident register/verify/fix scripts: the repair is
idempotent, so it is safe to run after any setup change or on a schedule.

Usage:
    python scripts/repair_webhooks.py
    python scripts/repair_webhooks.py --tenant <uuid>
    python scripts/repair_webhooks.py --callback-url https://example.com/api/v1/webhook/card-event
    python scripts/repair_webhooks.py --list
"""
import argparse
import asyncio
import logging
import sys
import uuid

from src.database import async_session_factory, dispose_engine
from src.integrations.trello import TrelloAPIError
from src.services.board_config import BoardConfigError, get_board_config, list_board_configs
from src.services.webhook_lifecycle import (
    WebhookRegistrationError,
    list_board_webhooks,
    repair_webhook,
)

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def _tenant_ids(tenant: uuid.UUID | None) -> list:
    if tenant:
        return [tenant]
    async with async_session_factory() as db:
        return [config.tenant_id for config in await list_board_configs(db)]


async def show(tenant: uuid.UUID | None) -> int:
    for tenant_id in await _tenant_ids(tenant):
        async with async_session_factory() as db:
            config = await get_board_config(db, tenant_id)
        logger.info("Tenant %s board %s (cached webhook %s)", tenant_id, config.board_id, config.webhook_id)
        try:
            webhooks = await list_board_webhooks(config)
        except TrelloAPIError as e:
            logger.error("  could not list webhooks: %s", e)
            continue
        for webhook in webhooks:
            logger.info(
                "  %s model=%s active=%s board=%s callback=%s url=%s",
                webhook.id, webhook.id_model, webhook.active,
                webhook.matches_board, webhook.matches_callback, webhook.callback_url,
            )
    return 0


async def repair(tenant: uuid.UUID | None, callback_url: str | None) -> int:
    failures = 0
    for tenant_id in await _tenant_ids(tenant):
        async with async_session_factory() as db:
            try:
                config = await get_board_config(db, tenant_id)
                result = await repair_webhook(db, config, callback_url=callback_url)
                await db.commit()
            except (BoardConfigError, WebhookRegistrationError) as e:
                await db.rollback()
                logger.error("[FAIL] tenant %s: %s", tenant_id, e)
                failures += 1
                continue

        logger.info(
            "[OK] tenant %s: webhook %s %s on %s, removed %d stale/duplicate",
            tenant_id, result.webhook_id, result.action, result.board_id_long,
            len(result.deleted_webhook_ids),
        )
    return 1 if failures else 0


async def main(args) -> int:
    try:
        if args.list:
            return await show(args.tenant)
        return await repair(args.tenant, args.callback_url)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Repair board webhook registrations")
    parser.add_argument("--tenant", type=uuid.UUID, help="Tenant id (default: every configured tenant)")
    parser.add_argument("--callback-url", help="Override the configured callback URL")
    parser.add_argument("--list", action="store_true", help="Only list registrations")
    sys.exit(asyncio.run(main(parser.parse_args())))
