"""
Tests for src/main.py and src/api/health.py - app wiring and health checks.
"""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from src.api.health import VERSION, health_check, readiness_check
from src.database import _engine_options
from src.main import app, create_app, startup_warnings
from tests.factories import TENANT_B, add_board_settings, add_tenant


class TestHealth:
    async def test_liveness(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == VERSION
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None

    async def test_ready(self, db):
        result = await readiness_check(db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}
        assert result["boards"] == {"configured": 0, "webhooks": 0}

    async def test_ready_counts_boards(self, db):
        await add_tenant(db)
        await add_board_settings(db, webhook_id="wh1")
        await add_tenant(db, TENANT_B, "Other")
        await add_board_settings(db, tenant_id=TENANT_B, board_id="other1")

        result = await readiness_check(db)
        assert result["boards"] == {"configured": 2, "webhooks": 1}

    async def test_degraded_without_redis(self, db):
        with patch("src.utils.redis_client.get_redis", new=AsyncMock(side_effect=ConnectionError("down"))):
            result = await readiness_check(db)
        assert result["status"] == "degraded"

    async def test_unavailable_without_database(self):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=RuntimeError("db down"))
        result = await readiness_check(db)
        assert result["status"] == "unavailable"
        assert "boards" not in result


class TestApp:
    def test_routes_registered(self):
        paths = {getattr(route, "path", None) for route in create_app().routes}
        assert "/api/v1/webhook/card-event" in paths
        assert "/api/v1/sync/quick" in paths
        assert "/api/v1/sync/full" in paths
        assert "/api/v1/board/webhooks/repair" in paths
        assert "/health" in paths

    def test_correlation_id_header(self):
        client = TestClient(app)
        response = client.get("/health", headers={"X-Correlation-ID": "cid-42"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "cid-42"

    def test_webhook_head_verification_request(self):
        client = TestClient(app)
        assert client.head("/api/v1/webhook/card-event").status_code == 200


class TestEngineOptions:
    def test_postgres_gets_pool_sizing(self):
        settings = MagicMock(
            database_url="postgresql+asyncpg://u:p@db/boardsync",
            database_pool_size=7, database_max_overflow=3,
        )
        assert _engine_options(settings) == {"pool_size": 7, "max_overflow": 3, "pool_pre_ping": True}

    def test_sqlite_has_no_pool_options(self):
        assert _engine_options(MagicMock(database_url="sqlite+aiosqlite:///:memory:")) == {}


class TestStartupWarnings:
    def _settings(self, **overrides):
        values = dict(
            dashboard_jwt_secret="jwt", encryption_key="key",
            trello_webhook_secret="secret", app_base_url="https://sync.example.com",
        )
        values.update(overrides)
        return MagicMock(**values)

    def test_production_ready_settings(self):
        assert startup_warnings(self._settings()) == []

    def test_each_gap_is_reported(self):
        warnings = startup_warnings(self._settings(
            dashboard_jwt_secret="", encryption_key="",
            trello_webhook_secret="", app_base_url="http://localhost:8000",
        ))
        assert len(warnings) == 4
        assert any("plaintext" in w for w in warnings)
        assert any("not HTTPS" in w for w in warnings)
