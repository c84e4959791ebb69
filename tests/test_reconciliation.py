"""
Tests for src/services/reconciliation.py - quick and full board sync.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from src.integrations.trello import TrelloAPIError
from src.models.event_log import EventLog
from src.models.lead import Lead
from src.schemas.trello import CardSummary, TrelloList
from src.services.batch_executor import BatchReport
from src.services.board_config import get_board_config
from src.services.card_mapper import LeadFields
from src.services.lead_gateway import get_lead, upsert_lead
from src.services.reconciliation import (
    ACTION_FULL,
    ACTION_QUICK,
    auto_map_lists,
    backfill_list_names,
    run_full_sync,
    run_quick_sync,
    select_recent_cards,
    sync_card,
)
from tests.factories import TENANT_A, add_board_settings, add_tenant, add_user, make_card

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _summary(card_id, minutes_ago, list_id="L1") -> CardSummary:
    return CardSummary.model_validate({
        "id": card_id,
        "name": card_id,
        "idList": list_id,
        "dateLastActivity": (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat(),
    })


def _cards_by_id(*cards):
    by_id = {card.id: card for card in cards}

    async def get_card(card_id):
        return by_id.get(card_id)
    return get_card


async def _setup(db, **settings):
    await add_tenant(db)
    await add_board_settings(db, status_mapping={"L1": "IN_PROGRESS"}, **settings)
    return await get_board_config(db, TENANT_A)


async def _seed_lead(db, external_id, list_id="L1"):
    return await upsert_lead(db, TENANT_A, external_id, LeadFields(
        trello_list_id=list_id, contact_name=external_id,
    ))


async def _event_logs(db, action):
    result = await db.execute(select(EventLog).where(EventLog.action == action))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# select_recent_cards
# ---------------------------------------------------------------------------

class TestSelectRecentCards:
    def _card(self, card_id, minutes_ago):
        return CardSummary.model_validate({
            "id": card_id,
            "dateLastActivity": (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        })

    def test_window_filter_and_order(self):
        cards = [self._card("old", 30), self._card("mid", 5), self._card("new", 1)]
        recent = select_recent_cards(cards, window_minutes=10, max_cards=50, now=NOW)
        assert [c.id for c in recent] == ["new", "mid"]

    def test_cap_keeps_most_recent(self):
        cards = [self._card(f"c{i}", i) for i in range(1, 8)]
        recent = select_recent_cards(cards, window_minutes=10, max_cards=3, now=NOW)
        assert [c.id for c in recent] == ["c1", "c2", "c3"]

    def test_cards_without_activity_are_ignored(self):
        cards = [CardSummary(id="x"), self._card("y", 2)]
        recent = select_recent_cards(cards, window_minutes=10, max_cards=50, now=NOW)
        assert [c.id for c in recent] == ["y"]


# ---------------------------------------------------------------------------
# sync_card
# ---------------------------------------------------------------------------

class TestSyncCard:
    async def test_new_card_is_created_then_updated(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_card.side_effect = _cards_by_id(make_card(id="A"))

        first = await sync_card(db, config, "A")
        second = await sync_card(db, config, "A")

        assert first.outcome == "created"
        assert second.outcome == "updated"
        assert first.lead_id == second.lead_id
        lead = await get_lead(db, TENANT_A, "A")
        assert lead.status == "IN_PROGRESS"
        assert (await db.execute(select(func.count()).select_from(Lead))).scalar_one() == 1

    async def test_missing_card_deletes_lead(self, db, trello_client):
        config = await _setup(db)
        await _seed_lead(db, "gone")

        result = await sync_card(db, config, "gone")

        assert result.outcome == "deleted"
        assert await get_lead(db, TENANT_A, "gone") is None

    async def test_missing_card_without_lead_is_skipped(self, db, trello_client):
        config = await _setup(db)
        result = await sync_card(db, config, "never-seen")
        assert result.outcome == "skipped"

    async def test_archived_card_without_lead_is_skipped(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_card.side_effect = _cards_by_id(make_card(id="B", closed=True))
        result = await sync_card(db, config, "B")
        assert result.outcome == "skipped"
        assert result.reason == "archived"

    async def test_card_member_assigns_seller(self, db, trello_client):
        config = await _setup(db)
        seller = await add_user(db, name="Ana Gomez")
        trello_client.get_card.side_effect = _cards_by_id(make_card(
            id="A", members=[{"id": "m1", "fullName": "Ana Gomez", "username": "ana"}],
        ))

        await sync_card(db, config, "A")

        assert (await get_lead(db, TENANT_A, "A")).assigned_seller_id == seller.id

    async def test_provider_error_propagates(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_card.side_effect = TrelloAPIError("boom", status_code=500)
        with pytest.raises(TrelloAPIError):
            await sync_card(db, config, "A")


# ---------------------------------------------------------------------------
# run_quick_sync
# ---------------------------------------------------------------------------

class TestQuickSync:
    async def test_created_deleted_skipped_in_one_run(self, db, trello_client):
        config = await _setup(db)
        await _seed_lead(db, "B")
        trello_client.get_board_cards.return_value = [
            _summary("A", 1), _summary("B", 2), _summary("C", 3),
        ]
        trello_client.get_card.side_effect = _cards_by_id(
            make_card(id="A"),
            make_card(id="B", closed=True),
            make_card(id="C", idList=None),
        )

        summary = await run_quick_sync(db, config)

        assert summary.created == 1
        assert summary.deleted == 1
        assert summary.skipped == 1
        assert summary.errors == 0
        assert summary.total == 3
        assert summary.cards_total == 3
        assert summary.timed_out is False
        assert await get_lead(db, TENANT_A, "A") is not None
        assert await get_lead(db, TENANT_A, "B") is None
        assert await get_lead(db, TENANT_A, "C") is None

    async def test_only_recent_cards_within_cap(self, db, trello_client):
        config = await _setup(db, quick_sync_max_cards=2)
        trello_client.get_board_cards.return_value = [
            _summary("stale", 60), _summary("r3", 3), _summary("r1", 1), _summary("r2", 2),
        ]
        trello_client.get_card.side_effect = _cards_by_id()

        summary = await run_quick_sync(db, config)

        fetched = [call.args[0] for call in trello_client.get_card.await_args_list]
        assert sorted(fetched) == ["r1", "r2"]
        assert summary.cards_total == 2

    async def test_checkpoint_and_audit_row(self, db, trello_client):
        config = await _setup(db)
        assert config.last_sync_at is None

        await run_quick_sync(db, config)

        assert (await get_board_config(db, TENANT_A)).last_sync_at is not None
        logs = await _event_logs(db, ACTION_QUICK)
        assert len(logs) == 1
        assert logs[0].status == "success"
        assert logs[0].data["created"] == 0
        assert "timeElapsedMs" in logs[0].data

    async def test_card_errors_are_counted_and_alerted(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_board_cards.return_value = [_summary("A", 1), _summary("B", 1)]
        trello_client.get_card.side_effect = TrelloAPIError("boom", status_code=500)

        with patch("src.services.reconciliation.send_alert", new_callable=AsyncMock) as alert:
            summary = await run_quick_sync(db, config)

        assert summary.errors == 2
        alert.assert_awaited_once()
        logs = await _event_logs(db, ACTION_QUICK)
        assert logs[0].status == "failure"
        assert logs[0].data["errorSamples"]

    async def test_failed_card_write_does_not_poison_run(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_board_cards.return_value = [
            _summary("bad", 1), _summary("A", 2), _summary("B", 3),
        ]
        trello_client.get_card.side_effect = _cards_by_id(
            make_card(id="bad"), make_card(id="A"), make_card(id="B"),
        )

        async def upsert_or_fail(session, tenant_id, external_id, fields):
            if external_id == "bad":
                # contact_name is NOT NULL; the flush raises IntegrityError
                session.add(Lead(
                    tenant_id=tenant_id, source="trello", external_id=external_id,
                    trello_list_id="L1", contact_name=None,
                ))
                await session.flush()
            return await upsert_lead(session, tenant_id, external_id, fields)

        with patch("src.services.reconciliation.upsert_lead", side_effect=upsert_or_fail):
            summary = await run_quick_sync(db, config, concurrency=1)

        assert summary.errors == 1
        assert summary.created == 2
        assert summary.total == 3
        assert await get_lead(db, TENANT_A, "bad") is None
        assert await get_lead(db, TENANT_A, "A") is not None
        assert await get_lead(db, TENANT_A, "B") is not None
        assert (await get_board_config(db, TENANT_A)).last_sync_at is not None
        logs = await _event_logs(db, ACTION_QUICK)
        assert logs[0].status == "partial"
        assert "IntegrityError" in logs[0].data["errorSamples"][0]

    async def test_listing_failure_raises(self, db, trello_client):
        config = await _setup(db)
        trello_client.get_board_cards.side_effect = TrelloAPIError("unauthorized", status_code=401)
        with pytest.raises(TrelloAPIError):
            await run_quick_sync(db, config)


# ---------------------------------------------------------------------------
# run_full_sync
# ---------------------------------------------------------------------------

class TestFullSync:
    async def test_auto_maps_lists_and_cleans_orphans(self, db, trello_client):
        config = await _setup(db)
        await _seed_lead(db, "orphan")
        trello_client.get_board_cards.return_value = [
            _summary("A", 600, list_id="L1"), _summary("W", 900, list_id="L2"),
        ]
        trello_client.get_board_lists.return_value = [
            TrelloList(id="L1", name="Nuevos"), TrelloList(id="L2", name="Ganados"),
        ]
        trello_client.get_card.side_effect = _cards_by_id(
            make_card(id="A", idList="L1"), make_card(id="W", idList="L2"),
        )

        summary = await run_full_sync(db, config)

        assert summary.created == 2
        assert summary.lists_auto_mapped == 1
        assert summary.orphaned_deleted == 1
        assert await get_lead(db, TENANT_A, "orphan") is None
        assert (await get_lead(db, TENANT_A, "W")).status == "WON"

        stored = await get_board_config(db, TENANT_A)
        assert stored.list_status_mapping == {"L1": "IN_PROGRESS", "L2": "WON"}
        assert len(await _event_logs(db, ACTION_FULL)) == 1

    async def test_truncated_run_skips_orphan_cleanup(self, db, trello_client):
        config = await _setup(db)
        await _seed_lead(db, "orphan")
        trello_client.get_board_cards.return_value = [_summary("A", 1)]
        trello_client.get_board_lists.return_value = [TrelloList(id="L1", name="Nuevos")]

        truncated = BatchReport(total=1, not_started=1, timed_out=True)
        with patch("src.services.reconciliation.run_batched", new=AsyncMock(return_value=truncated)):
            summary = await run_full_sync(db, config)

        assert summary.timed_out is True
        assert summary.orphaned_deleted == 0
        assert await get_lead(db, TENANT_A, "orphan") is not None
        assert (await _event_logs(db, ACTION_FULL))[0].status == "partial"

    async def test_auto_map_lists_noop_when_all_mapped(self, db, trello_client):
        config = await _setup(db)
        updated, count = await auto_map_lists(db, config, [TrelloList(id="L1", name="Ganados")])
        assert count == 0
        assert updated is config


# ---------------------------------------------------------------------------
# backfill_list_names
# ---------------------------------------------------------------------------

class TestBackfillListNames:
    async def test_fills_missing_names(self, db, trello_client):
        config = await _setup(db)
        await _seed_lead(db, "a", list_id="L1")
        await _seed_lead(db, "b", list_id="L2")
        await _seed_lead(db, "c", list_id="L-closed")
        trello_client.get_board_lists.return_value = [
            TrelloList(id="L1", name="Nuevos"), TrelloList(id="L2", name="Ganados"),
        ]

        fixed = await backfill_list_names(db, config)

        assert fixed == 2
        assert (await get_lead(db, TENANT_A, "a")).list_name == "Nuevos"
        assert (await get_lead(db, TENANT_A, "c")).list_name is None
