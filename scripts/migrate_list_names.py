"""
One-time migration: fill the denormalized list_name on board leads.

Leads created before list names were stored (or whose list was renamed since)
get the current name of their list. Leads in lists that are no longer open
are left for the next full sync to clean up.

Usage:
    python scripts/migrate_list_names.py
    python scripts/migrate_list_names.py --tenant <uuid>
"""
import argparse
import asyncio
import logging
import sys
import uuid

from src.database import async_session_factory, dispose_engine
from src.integrations.trello import TrelloAPIError
from src.services.board_config import BoardConfigError, get_board_config, list_board_configs
from src.services.reconciliation import backfill_list_names

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def migrate(tenant: uuid.UUID | None) -> int:
    if tenant:
        tenant_ids = [tenant]
    else:
        async with async_session_factory() as db:
            tenant_ids = [config.tenant_id for config in await list_board_configs(db)]

    failures = 0
    total = 0
    for tenant_id in tenant_ids:
        async with async_session_factory() as db:
            try:
                config = await get_board_config(db, tenant_id)
                fixed = await backfill_list_names(db, config)
                await db.commit()
            except (BoardConfigError, TrelloAPIError) as e:
                await db.rollback()
                logger.error("[FAIL] tenant %s: %s", tenant_id, e)
                failures += 1
                continue
        total += fixed
        logger.info("[OK] tenant %s: %d leads updated", tenant_id, fixed)

    logger.info("Done: %d leads updated across %d tenants", total, len(tenant_ids))
    await dispose_engine()
    return 1 if failures else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Backfill list names on board leads")
    parser.add_argument("--tenant", type=uuid.UUID, help="Tenant id (default: every configured tenant)")
    sys.exit(asyncio.run(migrate(parser.parse_args().tenant)))
