"""
Tests for src/schemas/webhook_payloads.py - id extraction from provider callbacks.
"""
from src.schemas.webhook_payloads import TrelloWebhookPayload


def _payload(action: dict, model: dict | None = None) -> TrelloWebhookPayload:
    return TrelloWebhookPayload.model_validate({"action": action, "model": model or {}})


class TestIdExtraction:
    def test_card_move(self):
        payload = _payload(
            {
                "type": "updateCard",
                "data": {
                    "card": {"id": "c1", "idList": "L2"},
                    "listBefore": {"id": "L1"},
                    "listAfter": {"id": "L2"},
                    "board": {"id": "b-long", "shortLink": "abc123"},
                },
            },
            model={"id": "b-long"},
        )
        assert payload.action_type == "updateCard"
        assert payload.card_id == "c1"
        assert payload.board_id == "b-long"
        assert payload.list_id == "L2"
        assert payload.is_card_action is True
        assert payload.card_closed is False

    def test_card_short_link_fallback(self):
        payload = _payload({"type": "createCard", "data": {"card": {"shortLink": "xYz"}}})
        assert payload.card_id == "xYz"

    def test_model_id_board_wins(self):
        payload = _payload(
            {"type": "createCard", "data": {"card": {"id": "c1"}, "board": {"id": "from-action"}}},
            model={"id": "c1", "idBoard": "from-model", "type": "card"},
        )
        assert payload.board_id == "from-model"

    def test_card_model_supplies_card_id(self):
        payload = _payload({"type": "addLabelToCard", "data": {}}, model={"id": "c9", "type": "card"})
        assert payload.card_id == "c9"

    def test_archived_card(self):
        payload = _payload({"type": "updateCard", "data": {"card": {"id": "c1", "closed": True}}})
        assert payload.card_closed is True

    def test_archived_list(self):
        payload = _payload({
            "type": "updateList",
            "data": {"list": {"id": "L1", "closed": True}, "board": {"id": "b1"}},
        })
        assert payload.card_id is None
        assert payload.list_id == "L1"
        assert payload.list_closed is True
        assert payload.board_id == "b1"

    def test_board_level_action(self):
        payload = _payload({"type": "updateBoard", "data": {"board": {"id": "b1"}}})
        assert payload.is_card_action is False
        assert payload.card_id is None

    def test_empty_body(self):
        payload = TrelloWebhookPayload.model_validate({})
        assert payload.action_type is None
        assert payload.card_id is None
        assert payload.board_id is None
