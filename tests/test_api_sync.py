"""
Tests for src/api/sync.py - quick and full sync endpoints.
"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from src.api.auth import CurrentUser
from src.api.sync import full_sync, quick_sync
from src.integrations.trello import TrelloAPIError
from src.schemas.api_responses import SyncRequest, SyncSummary
from src.schemas.trello import TrelloList
from tests.factories import TENANT_A, TENANT_B, add_board_settings, add_tenant

ADMIN = CurrentUser(id=uuid.uuid4(), role="ADMIN", tenant_id=TENANT_A)
SUPER_ADMIN = CurrentUser(id=uuid.uuid4(), role="SUPER_ADMIN", tenant_id=TENANT_B)


def _request(tenant_id=TENANT_A) -> SyncRequest:
    return SyncRequest.model_validate({"tenantId": str(tenant_id)})


async def _setup(db):
    await add_tenant(db)
    await add_board_settings(db)


class TestQuickSyncEndpoint:
    async def test_returns_summary(self, db, trello_client):
        await _setup(db)

        response = await quick_sync(_request(), db=db, user=ADMIN)

        assert response.success is True
        assert response.quick is True
        assert response.summary.total == 0
        body = response.model_dump(by_alias=True)
        assert "timeElapsedMs" in body["summary"]

    async def test_timed_out_run_still_succeeds(self, db, trello_client):
        await _setup(db)
        summary = SyncSummary(total=3, timed_out=True)

        with patch("src.api.sync.run_quick_sync", new=AsyncMock(return_value=summary)):
            response = await quick_sync(_request(), db=db, user=ADMIN)

        assert response.success is True
        assert response.summary.timed_out is True
        assert "Deadline" in response.message

    async def test_missing_configuration_is_400(self, db):
        with pytest.raises(HTTPException) as exc:
            await quick_sync(_request(), db=db, user=ADMIN)
        assert exc.value.status_code == 400

    async def test_provider_failure_is_502(self, db, trello_client):
        await _setup(db)
        trello_client.get_board_cards.side_effect = TrelloAPIError("down", status_code=503)

        with pytest.raises(HTTPException) as exc:
            await quick_sync(_request(), db=db, user=ADMIN)
        assert exc.value.status_code == 502

    async def test_other_tenant_forbidden(self, db):
        with pytest.raises(HTTPException) as exc:
            await quick_sync(_request(TENANT_B), db=db, user=ADMIN)
        assert exc.value.status_code == 403

    async def test_super_admin_may_sync_any_tenant(self, db, trello_client):
        await _setup(db)
        response = await quick_sync(_request(TENANT_A), db=db, user=SUPER_ADMIN)
        assert response.success is True


class TestFullSyncEndpoint:
    async def test_returns_full_summary(self, db, trello_client):
        await _setup(db)
        trello_client.get_board_lists.return_value = [TrelloList(id="L1", name="Nuevos")]

        response = await full_sync(_request(), db=db, user=ADMIN)

        assert response.quick is False
        assert response.summary.lists_auto_mapped == 1
        assert response.summary.orphaned_deleted == 0

    async def test_invalid_tenant_id_is_400(self, db):
        with pytest.raises(HTTPException) as exc:
            await full_sync(SyncRequest(tenant_id="nope"), db=db, user=ADMIN)
        assert exc.value.status_code == 400
