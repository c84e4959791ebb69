"""
Tests for src/services/lead_gateway.py - idempotent lead writes.
"""
from unittest.mock import patch

from sqlalchemy import func, select

from src.models.communication import Communication
from src.models.document import Document
from src.models.lead import Lead, SOURCE_TRELLO
from src.models.ledger_movement import LedgerMovement
from src.models.operation import Operation
from src.services.card_mapper import LeadFields
from src.services.lead_gateway import (
    delete_lead,
    delete_leads_in_list,
    delete_orphaned_leads,
    get_lead,
    leads_missing_list_name,
    load_seller_candidates,
    upsert_lead,
)
from tests.factories import TENANT_A, TENANT_B, add_tenant, add_user


def _fields(**overrides) -> LeadFields:
    values = {
        "trello_list_id": "L1",
        "list_name": "Nuevos",
        "trello_url": "https://trello.com/c/card1",
        "board_data": {"id": "card1", "name": "Maria Lopez"},
        "status": "NEW",
        "region": "OTHER",
        "destination": "Cancun",
        "contact_name": "Maria Lopez",
        "contact_phone": "+54 9 11 5555-1234",
    }
    values.update(overrides)
    return LeadFields(**values)


async def _lead_count(db, tenant_id=None) -> int:
    query = select(func.count()).select_from(Lead)
    if tenant_id is not None:
        query = query.where(Lead.tenant_id == tenant_id)
    return (await db.execute(query)).scalar_one()


# ---------------------------------------------------------------------------
# upsert_lead
# ---------------------------------------------------------------------------

class TestUpsertLead:
    async def test_first_observation_creates(self, db):
        await add_tenant(db)
        result = await upsert_lead(db, TENANT_A, "card1", _fields())

        assert result.created is True
        lead = await get_lead(db, TENANT_A, "card1")
        assert lead.id == result.lead_id
        assert lead.source == SOURCE_TRELLO
        assert lead.contact_name == "Maria Lopez"
        assert lead.board_data == {"id": "card1", "name": "Maria Lopez"}

    async def test_replay_is_idempotent(self, db):
        await add_tenant(db)
        first = await upsert_lead(db, TENANT_A, "card1", _fields())
        lead = await get_lead(db, TENANT_A, "card1")
        updated_at = lead.updated_at

        for _ in range(3):
            again = await upsert_lead(db, TENANT_A, "card1", _fields())
            assert again.created is False
            assert again.changed is False
            assert again.lead_id == first.lead_id

        assert await _lead_count(db) == 1
        assert (await get_lead(db, TENANT_A, "card1")).updated_at == updated_at

    async def test_changed_fields_are_written(self, db):
        await add_tenant(db)
        await upsert_lead(db, TENANT_A, "card1", _fields())

        result = await upsert_lead(
            db, TENANT_A, "card1", _fields(trello_list_id="L2", status="WON", list_name="Ganados"),
        )

        assert result.created is False
        assert result.changed is True
        lead = await get_lead(db, TENANT_A, "card1")
        assert lead.status == "WON"
        assert lead.trello_list_id == "L2"
        assert await _lead_count(db) == 1

    async def test_same_card_id_is_isolated_per_tenant(self, db):
        await add_tenant(db, TENANT_A)
        await add_tenant(db, TENANT_B, name="Other")

        a = await upsert_lead(db, TENANT_A, "card1", _fields(contact_name="Tenant A"))
        b = await upsert_lead(db, TENANT_B, "card1", _fields(contact_name="Tenant B"))

        assert a.created and b.created
        assert a.lead_id != b.lead_id
        assert (await get_lead(db, TENANT_A, "card1")).contact_name == "Tenant A"
        assert (await get_lead(db, TENANT_B, "card1")).contact_name == "Tenant B"

    async def test_concurrent_insert_of_same_card_becomes_update(self, db):
        await add_tenant(db)
        lookups = []

        async def insert_after_lookup(session, tenant_id, external_id):
            # The first lookup misses, then another writer inserts the card
            lookups.append(external_id)
            if len(lookups) == 1:
                session.add(Lead(
                    tenant_id=tenant_id, source=SOURCE_TRELLO, external_id=external_id,
                    trello_list_id="L0", contact_name="Earlier",
                ))
                await session.flush()
                return None
            return await get_lead(session, tenant_id, external_id)

        with patch("src.services.lead_gateway.get_lead", side_effect=insert_after_lookup):
            result = await upsert_lead(db, TENANT_A, "card1", _fields())

        assert result.created is False
        assert result.changed is True
        assert len(lookups) == 2
        lead = await get_lead(db, TENANT_A, "card1")
        assert lead.id == result.lead_id
        assert lead.contact_name == "Maria Lopez"
        assert lead.trello_list_id == "L1"
        assert await _lead_count(db) == 1


# ---------------------------------------------------------------------------
# delete_lead
# ---------------------------------------------------------------------------

class TestDeleteLead:
    async def test_missing_lead_returns_false(self, db):
        assert await delete_lead(db, TENANT_A, "nope") is False

    async def test_delete_removes_owned_and_keeps_surviving_children(self, db):
        await add_tenant(db)
        result = await upsert_lead(db, TENANT_A, "card1", _fields())
        lead_id = result.lead_id

        db.add_all([
            Document(tenant_id=TENANT_A, lead_id=lead_id, file_name="passport.pdf"),
            Communication(tenant_id=TENANT_A, lead_id=lead_id, channel="whatsapp"),
            Operation(tenant_id=TENANT_A, lead_id=lead_id, file_code="OP-1"),
            LedgerMovement(tenant_id=TENANT_A, lead_id=lead_id, amount=100.0),
        ])
        await db.flush()

        assert await delete_lead(db, TENANT_A, "card1") is True

        assert await get_lead(db, TENANT_A, "card1") is None
        assert (await db.execute(select(func.count()).select_from(Document))).scalar_one() == 0
        assert (await db.execute(select(func.count()).select_from(Communication))).scalar_one() == 0

        operation = (await db.execute(select(Operation))).scalar_one()
        movement = (await db.execute(select(LedgerMovement))).scalar_one()
        assert operation.lead_id is None
        assert movement.lead_id is None

    async def test_delete_does_not_cross_tenants(self, db):
        await add_tenant(db, TENANT_A)
        await add_tenant(db, TENANT_B, name="Other")
        await upsert_lead(db, TENANT_A, "card1", _fields())
        await upsert_lead(db, TENANT_B, "card1", _fields())

        assert await delete_lead(db, TENANT_A, "card1") is True

        assert await get_lead(db, TENANT_A, "card1") is None
        assert await get_lead(db, TENANT_B, "card1") is not None

    async def test_recreate_after_delete(self, db):
        await add_tenant(db)
        await upsert_lead(db, TENANT_A, "card1", _fields())
        await delete_lead(db, TENANT_A, "card1")

        result = await upsert_lead(db, TENANT_A, "card1", _fields())
        assert result.created is True
        assert await _lead_count(db) == 1


# ---------------------------------------------------------------------------
# Bulk deletes
# ---------------------------------------------------------------------------

class TestBulkDeletes:
    async def test_delete_leads_in_list(self, db):
        await add_tenant(db)
        await upsert_lead(db, TENANT_A, "c1", _fields(trello_list_id="L1"))
        await upsert_lead(db, TENANT_A, "c2", _fields(trello_list_id="L1"))
        await upsert_lead(db, TENANT_A, "c3", _fields(trello_list_id="L2"))

        deleted = await delete_leads_in_list(db, TENANT_A, "L1")

        assert deleted == 2
        assert await get_lead(db, TENANT_A, "c3") is not None
        assert await _lead_count(db) == 1

    async def test_delete_leads_in_list_empty(self, db):
        assert await delete_leads_in_list(db, TENANT_A, "L1") == 0

    async def test_orphans_by_card_and_by_list(self, db):
        await add_tenant(db)
        await upsert_lead(db, TENANT_A, "kept", _fields(trello_list_id="L1"))
        await upsert_lead(db, TENANT_A, "gone", _fields(trello_list_id="L1"))
        await upsert_lead(db, TENANT_A, "closed-list", _fields(trello_list_id="L9"))

        deleted = await delete_orphaned_leads(
            db, TENANT_A, open_card_ids=["kept", "closed-list"], active_list_ids=["L1"],
        )

        assert deleted == 2
        assert await get_lead(db, TENANT_A, "kept") is not None
        assert await get_lead(db, TENANT_A, "gone") is None
        assert await get_lead(db, TENANT_A, "closed-list") is None

    async def test_orphans_ignore_other_sources_and_tenants(self, db):
        await add_tenant(db, TENANT_A)
        await add_tenant(db, TENANT_B, name="Other")
        await upsert_lead(db, TENANT_B, "b-card", _fields())
        db.add(Lead(tenant_id=TENANT_A, source="manual", contact_name="Walk-in"))
        await db.flush()

        deleted = await delete_orphaned_leads(db, TENANT_A, open_card_ids=[], active_list_ids=[])

        assert deleted == 0
        assert await _lead_count(db) == 2


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:
    async def test_load_seller_candidates(self, db):
        await add_tenant(db, TENANT_A)
        await add_tenant(db, TENANT_B, name="Other")
        ana = await add_user(db, name="Ana Gomez")
        await add_user(db, name="Viewer", role="VIEWER")
        await add_user(db, name="Inactive", is_active=False)
        await add_user(db, tenant_id=TENANT_B, name="Foreign")

        sellers = await load_seller_candidates(db, TENANT_A)

        assert [s.id for s in sellers] == [ana.id]

    async def test_leads_missing_list_name(self, db):
        await add_tenant(db)
        await upsert_lead(db, TENANT_A, "empty", _fields(trello_list_id="L1", list_name=None))
        await upsert_lead(db, TENANT_A, "renamed", _fields(trello_list_id="L2", list_name="Old"))
        await upsert_lead(db, TENANT_A, "fine", _fields(trello_list_id="L3", list_name="Won"))

        stale = await leads_missing_list_name(
            db, TENANT_A, {"L1": "Nuevos", "L2": "New name", "L3": "Won"},
        )

        assert sorted(lead.external_id for lead in stale) == ["empty", "renamed"]
