"""
Run a board reconciliation - the entry point for an external timer (cron).

Each tenant runs in its own transaction; one tenant's failure does not stop
the others.

Usage:
    python scripts/run_sync.py                     # quick sync, every tenant
    python scripts/run_sync.py --full              # full sync, every tenant
    python scripts/run_sync.py --tenant <uuid> --full
"""
import argparse
import asyncio
import logging
import sys
import uuid

from src.config import get_settings
from src.database import async_session_factory, dispose_engine
from src.integrations.trello import TrelloAPIError
from src.services.board_config import BoardConfigError, get_board_config, list_board_configs
from src.services.reconciliation import run_full_sync, run_quick_sync
from src.utils.logging import configure_structured_logging, sync_log_context

logger = logging.getLogger("boardsync.run_sync")


async def sync_tenant(tenant_id, full: bool) -> bool:
    with sync_log_context(tenant_id):
        return await _sync_tenant(tenant_id, full)


async def _sync_tenant(tenant_id, full: bool) -> bool:
    async with async_session_factory() as db:
        try:
            config = await get_board_config(db, tenant_id)
            if full:
                summary = await run_full_sync(db, config)
            else:
                summary = await run_quick_sync(db, config)
            await db.commit()
        except (BoardConfigError, TrelloAPIError) as e:
            await db.rollback()
            logger.error("Sync failed for tenant %s: %s", str(tenant_id)[:8], str(e))
            return False
        except Exception:
            # Database and other unexpected errors end this tenant only
            logger.exception("Sync crashed for tenant %s", str(tenant_id)[:8])
            await db.rollback()
            return False

    logger.info(
        "Tenant %s %s sync: %s",
        str(tenant_id)[:8], "full" if full else "quick",
        summary.model_dump_json(by_alias=True, exclude_none=True),
    )
    return True


async def main(tenant: uuid.UUID | None, full: bool) -> int:
    try:
        if tenant:
            tenant_ids = [tenant]
        else:
            async with async_session_factory() as db:
                tenant_ids = [config.tenant_id for config in await list_board_configs(db)]

        if not tenant_ids:
            logger.warning("No configured boards to sync")
            return 0

        failures = 0
        for tenant_id in tenant_ids:
            if not await sync_tenant(tenant_id, full):
                failures += 1
    finally:
        await dispose_engine()

    if failures:
        logger.warning("%d of %d tenants failed to sync", failures, len(tenant_ids))
    return 1 if failures else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile board cards into leads")
    parser.add_argument("--tenant", type=uuid.UUID, help="Tenant id (default: every configured tenant)")
    parser.add_argument("--full", action="store_true", help="Full sync instead of quick")
    args = parser.parse_args()

    configure_structured_logging(get_settings().log_level)
    sys.exit(asyncio.run(main(args.tenant, args.full)))
