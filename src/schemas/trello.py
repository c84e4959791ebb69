"""
Board provider (Trello) payload schemas.
Provider JSON is decoded into these models once, at the edge; services never
index into raw dicts. Unknown keys are kept (extra="allow") so the card snapshot
stored on the lead can carry whatever the provider sent.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class _TrelloModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TrelloLabel(_TrelloModel):
    id: str = ""
    name: str = ""
    color: Optional[str] = None


class TrelloMember(_TrelloModel):
    id: str
    full_name: str = Field("", alias="fullName")
    username: str = ""


class TrelloList(_TrelloModel):
    id: str
    name: str = ""
    closed: bool = False
    id_board: Optional[str] = Field(None, alias="idBoard")
    pos: Optional[float] = None


class TrelloBoard(_TrelloModel):
    id: str
    name: str = ""
    short_link: Optional[str] = Field(None, alias="shortLink")
    url: Optional[str] = None
    closed: bool = False


class TrelloWebhook(_TrelloModel):
    """A webhook registration as returned by tokens/{token}/webhooks."""
    id: str
    description: Optional[str] = None
    id_model: str = Field(alias="idModel")
    callback_url: str = Field(alias="callbackURL")
    active: bool = True


class CardSummary(_TrelloModel):
    """Lightweight card row used by the quick sync recency filter."""
    id: str
    name: str = ""
    date_last_activity: Optional[datetime] = Field(None, alias="dateLastActivity")
    id_list: Optional[str] = Field(None, alias="idList")


class TrelloCard(_TrelloModel):
    """Full card as returned by cards/{id} with members, labels, list and checklists."""
    id: str
    name: str = ""
    desc: str = ""
    closed: bool = False
    id_list: Optional[str] = Field(None, alias="idList")
    id_board: Optional[str] = Field(None, alias="idBoard")
    short_link: Optional[str] = Field(None, alias="shortLink")
    url: Optional[str] = None
    short_url: Optional[str] = Field(None, alias="shortUrl")
    date_last_activity: Optional[datetime] = Field(None, alias="dateLastActivity")
    due: Optional[datetime] = None
    due_complete: bool = Field(False, alias="dueComplete")
    start: Optional[datetime] = None

    labels: list[TrelloLabel] = Field(default_factory=list)
    members: list[TrelloMember] = Field(default_factory=list)
    attachments: list[dict] = Field(default_factory=list)
    checklists: list[dict] = Field(default_factory=list)
    custom_field_items: list[dict] = Field(default_factory=list, alias="customFieldItems")

    # Embedded list, present when fetched with list=true
    list_ref: Optional[TrelloList] = Field(None, alias="list")

    @property
    def list_id(self) -> Optional[str]:
        """List the card sits in; falls back to the embedded list object."""
        if self.id_list:
            return self.id_list
        if self.list_ref is not None:
            return self.list_ref.id
        return None

    @property
    def list_name(self) -> Optional[str]:
        if self.list_ref is not None and self.list_ref.name:
            return self.list_ref.name
        return None

    @property
    def link(self) -> Optional[str]:
        return self.url or self.short_url


class TrelloMemberMe(_TrelloModel):
    id: str
    username: str = ""
    full_name: str = Field("", alias="fullName")
