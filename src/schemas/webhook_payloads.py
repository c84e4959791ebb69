"""
Webhook payload schemas - raw input from the board provider.
The provider's action payload changes shape by action type; the card, board
and list ids are pulled from whichever location carries them.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

CARD_ACTIONS = frozenset({
    "createCard",
    "addCardToBoard",
    "copyCard",
    "updateCard",
    "moveCardFromList",
    "moveCardToList",
    "updateCard:closed",
    "updateCard:name",
    "updateCard:desc",
    "addMemberToCard",
    "removeMemberFromCard",
    "addAttachmentToCard",
    "addLabelToCard",
    "removeLabelFromCard",
    "updateCheckItemStateOnCard",
    "addChecklistToCard",
    "removeChecklistFromCard",
})

DELETE_CARD_ACTIONS = frozenset({"deleteCard"})

LIST_ACTIONS = frozenset({
    "updateList",
    "createList",
    "updateList:closed",
    "updateList:name",
})


def _first(*values) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


class TrelloWebhookPayload(BaseModel):
    """Provider webhook callback: {action: {...}, model: {...}}."""
    model_config = ConfigDict(extra="allow")

    action: dict = Field(default_factory=dict)
    model: dict = Field(default_factory=dict)

    @property
    def _data(self) -> dict:
        data = self.action.get("data")
        return data if isinstance(data, dict) else {}

    def _nested(self, key: str) -> dict:
        value = self._data.get(key)
        return value if isinstance(value, dict) else {}

    @property
    def action_type(self) -> Optional[str]:
        return self.action.get("type") or None

    @property
    def object_type(self) -> Optional[str]:
        return self.model.get("type") or self._nested("card").get("type")

    @property
    def card_id(self) -> Optional[str]:
        card = self._nested("card")
        return _first(
            card.get("id"),
            card.get("shortLink"),
            self._data.get("cardId"),
            self._nested("old").get("id"),
            self.model.get("id") if self.object_type == "card" else None,
        )

    @property
    def board_id(self) -> Optional[str]:
        board = self._nested("board")
        return _first(
            self.model.get("idBoard"),
            board.get("id"),
            board.get("shortLink"),
            self._nested("list").get("idBoard"),
            self._nested("card").get("idBoard"),
            self.model.get("id") if self.object_type == "board" else None,
        )

    @property
    def list_id(self) -> Optional[str]:
        return _first(
            self._nested("list").get("id"),
            self._nested("listAfter").get("id"),
            self._nested("card").get("idList"),
        )

    @property
    def is_card_action(self) -> bool:
        action_type = self.action_type or ""
        return (
            bool(self._nested("card"))
            or self.object_type == "card"
            or "Card" in action_type
        )

    @property
    def card_closed(self) -> bool:
        """True when the action archived the card."""
        return self._nested("card").get("closed") is True

    @property
    def list_closed(self) -> bool:
        """True when the action archived the list."""
        return self._nested("list").get("closed") is True
