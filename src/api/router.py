"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from src.api.webhooks import router as webhooks_router
from src.api.sync import router as sync_router
from src.api.board_admin import router as board_admin_router
from src.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(sync_router)
api_router.include_router(board_admin_router)
api_router.include_router(health_router)
