"""
Board administration endpoints - credential validation and webhook repair.
Admin only; not on the card event hot path.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import CurrentUser, get_current_admin, require_tenant_access
from src.database import get_db
from src.integrations.trello import TrelloAPIError
from src.schemas.api_responses import (
    BoardWebhookSummary,
    ValidateRequest,
    ValidateResponse,
    WebhookRepairRequest,
    WebhookRepairResult,
)
from src.services.board_config import BoardConfigError, get_board_config, validate_credentials
from src.services.webhook_lifecycle import (
    WebhookRegistrationError,
    list_board_webhooks,
    remove_webhook,
    repair_webhook,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/board", tags=["board"])


async def _load_config(db: AsyncSession, user: CurrentUser, tenant_id: str):
    tenant_uuid = require_tenant_access(user, tenant_id)
    try:
        return await get_board_config(db, tenant_uuid)
    except BoardConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/webhooks", response_model=list[BoardWebhookSummary])
async def get_board_webhooks(
    tenant_id: str = Query(..., alias="tenantId"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_admin),
):
    """Registrations targeting the tenant's board or our callback URL."""
    config = await _load_config(db, user, tenant_id)
    try:
        return await list_board_webhooks(config)
    except TrelloAPIError as e:
        raise HTTPException(status_code=502, detail=f"Board provider error: {e}")


@router.post("/webhooks/repair", response_model=WebhookRepairResult)
async def repair_board_webhook(
    payload: WebhookRepairRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_admin),
):
    """Deduplicate, clean up and (re)register the tenant's webhook."""
    config = await _load_config(db, user, payload.tenant_id)
    try:
        return await repair_webhook(db, config)
    except WebhookRegistrationError as e:
        logger.error("Webhook repair tenant=%s failed: %s", str(config.tenant_id)[:8], str(e))
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/webhooks/{webhook_id}")
async def delete_board_webhook(
    webhook_id: str,
    tenant_id: str = Query(..., alias="tenantId"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_admin),
):
    config = await _load_config(db, user, tenant_id)
    try:
        deleted = await remove_webhook(db, config, webhook_id)
    except WebhookRegistrationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "deleted": deleted}


@router.post("/validate", response_model=ValidateResponse)
async def validate_board(
    payload: ValidateRequest,
    user: CurrentUser = Depends(get_current_admin),
):
    """Check API key, token and board id before they are saved."""
    return await validate_credentials(payload.api_key, payload.token, payload.board_id)
