"""
Health endpoints for the load balancer and the sync timer.

- GET /health       - liveness, 200 while the process serves requests
- GET /health/ready - database and Redis reachability plus how many boards
                      are configured and how many have a webhook registered
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from src.database import get_db
from src.models.board_settings import BoardSettings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": _now(), "version": VERSION}


async def _board_counts(db: AsyncSession) -> dict:
    row = (await db.execute(
        select(func.count(BoardSettings.id), func.count(BoardSettings.webhook_id))
    )).one()
    return {"configured": row[0], "webhooks": row[1]}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Redis only backs webhook rate limiting and alert cooldowns (both fail
    open), so losing it degrades readiness instead of failing it.
    """
    checks = {"database": False, "redis": False}
    boards = None

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
        boards = await _board_counts(db)
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    if all(checks.values()):
        status = "ready"
    elif checks["database"]:
        status = "degraded"
    else:
        status = "unavailable"

    result = {"status": status, "checks": checks, "timestamp": _now()}
    if boards is not None:
        result["boards"] = boards
    return result
