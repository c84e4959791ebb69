"""
Sync endpoints - admin or timer triggered reconciliation runs.

Both return 200 with a summary even when cards failed or the deadline cut the
run short; partial success is the normal case for time-boxed work. Only a
missing/invalid board configuration (400) or a provider failure listing the
board (502) return an error status.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import CurrentUser, get_current_user, require_tenant_access
from src.database import get_db
from src.integrations.trello import TrelloAPIError
from src.schemas.api_responses import SyncRequest, SyncResponse
from src.services.board_config import BoardConfigError, get_board_config
from src.services.reconciliation import run_full_sync, run_quick_sync
from src.utils.logging import sync_log_context

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


async def _load_config(db: AsyncSession, user: CurrentUser, tenant_id: str):
    tenant_uuid = require_tenant_access(user, tenant_id)
    try:
        return await get_board_config(db, tenant_uuid)
    except BoardConfigError as e:
        logger.warning("Sync refused for tenant %s: %s", str(tenant_uuid)[:8], str(e))
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/quick", response_model=SyncResponse, response_model_by_alias=True)
async def quick_sync(
    payload: SyncRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Sync cards touched in the last few minutes."""
    config = await _load_config(db, user, payload.tenant_id)
    try:
        with sync_log_context(config.tenant_id):
            summary = await run_quick_sync(db, config)
    except TrelloAPIError as e:
        logger.error("Quick sync tenant=%s failed: %s", str(config.tenant_id)[:8], str(e))
        raise HTTPException(status_code=502, detail=f"Board provider error: {e}")

    return SyncResponse(
        quick=True,
        message="Deadline reached, remaining cards left for the next run" if summary.timed_out else "",
        summary=summary,
    )


@router.post("/full", response_model=SyncResponse, response_model_by_alias=True)
async def full_sync(
    payload: SyncRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Sync every open card and clean up leads whose card is gone."""
    config = await _load_config(db, user, payload.tenant_id)
    try:
        with sync_log_context(config.tenant_id):
            summary = await run_full_sync(db, config)
    except TrelloAPIError as e:
        logger.error("Full sync tenant=%s failed: %s", str(config.tenant_id)[:8], str(e))
        raise HTTPException(status_code=502, detail=f"Board provider error: {e}")

    return SyncResponse(
        quick=False,
        message="Deadline reached, orphan cleanup skipped" if summary.timed_out else "",
        summary=summary,
    )
