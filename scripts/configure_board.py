"""
Store a tenant's board credentials and list mappings.

Credentials are validated against the provider first; the canonical board id
is stored alongside the configured alias. Mappings are JSON files of
{"<list id>": "<status or region>"}.

Usage:
    python scripts/configure_board.py --tenant <uuid> --api-key KEY --token TOKEN --board abc123
    python scripts/configure_board.py --tenant <uuid> --api-key KEY --token TOKEN --board abc123 \\
        --status-mapping status.json --region-mapping region.json
"""
import argparse
import asyncio
import json
import logging
import sys
import uuid

from src.database import async_session_factory, dispose_engine
from src.services.board_config import upsert_board_settings, validate_credentials
from src.utils.encryption import mask_secret

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def _load_mapping(path: str | None) -> dict | None:
    if not path:
        return None
    with open(path, encoding="utf-8") as f:
        mapping = json.load(f)
    if not isinstance(mapping, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return {str(k): str(v) for k, v in mapping.items()}


async def configure(args) -> int:
    status_mapping = _load_mapping(args.status_mapping)
    region_mapping = _load_mapping(args.region_mapping)

    validation = await validate_credentials(args.api_key, args.token, args.board)
    if not validation.valid:
        logger.error("[FAIL] %s", validation.error)
        return 1

    logger.info(
        "Board '%s' (%s / %s) as %s, key %s",
        validation.board_name, validation.board_short_link, validation.board_id_long,
        validation.member_username, mask_secret(args.api_key),
    )
    for lst in validation.lists:
        status = (status_mapping or {}).get(lst.id, "-")
        region = (region_mapping or {}).get(lst.id, "-")
        logger.info("  list %s %-30s status=%s region=%s", lst.id, lst.name, status, region)

    async with async_session_factory() as db:
        await upsert_board_settings(
            db,
            args.tenant,
            api_key=args.api_key,
            token=args.token,
            board_id=args.board,
            list_status_mapping=status_mapping,
            list_region_mapping=region_mapping,
            board_id_long=validation.board_id_long,
        )
        await db.commit()

    logger.info("[OK] Board settings saved for tenant %s", args.tenant)
    await dispose_engine()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Configure a tenant's board")
    parser.add_argument("--tenant", type=uuid.UUID, required=True)
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--token", required=True)
    parser.add_argument("--board", required=True, help="Board short link or id")
    parser.add_argument("--status-mapping", help="JSON file: list id -> status")
    parser.add_argument("--region-mapping", help="JSON file: list id -> region")
    sys.exit(asyncio.run(configure(parser.parse_args())))
