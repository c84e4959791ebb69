"""
Board Sync - keeps back office leads consistent with the agency's Kanban board.
Main FastAPI application entry point.

There are no background workers: every sync is a request-scoped unit of work,
triggered by a provider webhook, an admin, or an external timer hitting the
sync endpoints (or scripts/run_sync.py).
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.router import api_router
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("boardsync")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def startup_warnings(settings) -> list[str]:
    """Configuration gaps that are tolerated locally but unsafe in production."""
    warnings = []
    if not settings.dashboard_jwt_secret:
        warnings.append("DASHBOARD_JWT_SECRET not set - bearer tokens are signed with APP_SECRET_KEY")
    if not settings.encryption_key:
        warnings.append("ENCRYPTION_KEY not set - board API keys and tokens are stored in plaintext")
    if not settings.trello_webhook_secret:
        warnings.append("TRELLO_WEBHOOK_SECRET not set - card event signatures are not verified")
    if not settings.app_base_url.startswith("https://"):
        warnings.append(
            f"APP_BASE_URL {settings.app_base_url} is not HTTPS - the provider will refuse webhook registration"
        )
    return warnings


def _init_sentry(settings) -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=0.1,
            environment=settings.app_env,
        )
        logger.info("Sentry initialized")
    except Exception as e:
        logger.warning("Sentry initialization failed: %s", str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Board sync starting up (env=%s)", settings.app_env)
    for warning in startup_warnings(settings):
        logger.warning(warning)
    _init_sentry(settings)

    yield

    from src.database import dispose_engine
    from src.utils.redis_client import close_redis
    await close_redis()
    await dispose_engine()
    logger.info("Board sync shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Board Sync",
        description="Kanban board to lead store synchronization engine",
        version="1.0.0",
        lifespan=lifespan,
    )

    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        settings.app_base_url,
    ]
    origins += [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
