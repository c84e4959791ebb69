"""
Card mapper - pure translation of a board card into lead fields.

map_card() never touches the database or the network. It returns one of:
- MappedCard: the lead fields to upsert
- DeleteCard: the card is archived, the lead must go
- SkipCard: the card cannot be placed (no list id) and is left alone

Contact details are pulled from the free-text description. Descriptions
written by form automations carry labelled lines (📍 Destino:, 📱 WhatsApp:, ...)
which take precedence over the generic patterns.
"""
import logging
import re
import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import String

from src.models.lead import DEFAULT_REGION, DEFAULT_STATUS, LEAD_STATUSES, Lead
from src.schemas.trello import TrelloCard

logger = logging.getLogger(__name__)

NO_DESTINATION = "No destination"
UNNAMED_CARD = "Unnamed card"

PRIORITY_LABELS = frozenset({"urgent", "important", "low", "high", "medium"})

TITLE_SPLIT_RE = re.compile(r"\s*[-:,\n]\s*")
PHONE_RE = re.compile(r"\+?\(?\d[\d \t().-]{5,}\d")
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
INSTAGRAM_HANDLE_RE = re.compile(r"(?<![\w.@])@([A-Za-z0-9._]{1,30})")
MIN_PHONE_DIGITS = 7

# Labelled description lines -> structured field name
STRUCTURED_FIELD_PATTERNS = {
    "destination": re.compile(r"📍\s*Destino:[ \t]*(.+)", re.IGNORECASE),
    "dates": re.compile(r"📅\s*Fechas:[ \t]*(.+)", re.IGNORECASE),
    "travelers": re.compile(r"👥\s*Personas:[ \t]*(.+)", re.IGNORECASE),
    "minors": re.compile(r"👶\s*Menores:[ \t]*(.+)", re.IGNORECASE),
    "budget": re.compile(r"💰\s*Presupuesto:[ \t]*(.+)", re.IGNORECASE),
    "service": re.compile(r"✈️?\s*Servicio:[ \t]*(.+)", re.IGNORECASE),
    "event": re.compile(r"🎟️?\s*Evento:[ \t]*(.+)", re.IGNORECASE),
    "whatsapp": re.compile(r"(?:📱\s*)?\bWhatsApp:[ \t]*(.+)", re.IGNORECASE),
    "instagram": re.compile(r"\bInstagram:[ \t]*(.+)", re.IGNORECASE),
    "phase": re.compile(r"\bFase:[ \t]*(.+)", re.IGNORECASE),
}

# Keyword heuristic for lists discovered during a full sync
LIST_NAME_STATUS_KEYWORDS = (
    ("NEW", ("nuevo", "new", "pendiente")),
    ("IN_PROGRESS", ("progreso", "progress", "trabajando")),
    ("QUOTED", ("cotizado", "quoted", "presupuesto")),
    ("WON", ("ganado", "won", "cerrado")),
    ("LOST", ("perdido", "lost", "cancelado")),
)


class SellerCandidate(BaseModel):
    """An active user a card member can be matched to."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    name: str


# Bounded VARCHAR widths of the lead table, keyed by column name
LEAD_COLUMN_WIDTHS = {
    column.name: column.type.length
    for column in Lead.__table__.columns
    if isinstance(column.type, String) and column.type.length
}


class LeadFields(BaseModel):
    """
    Every lead column a card observation writes.
    Card titles, labels and list names can be far longer than the columns;
    values are cut to the column width so the same card always maps the same.
    """
    trello_list_id: str
    list_name: Optional[str] = None
    trello_url: Optional[str] = None
    board_data: dict = Field(default_factory=dict)
    status: str = DEFAULT_STATUS
    region: str = DEFAULT_REGION
    destination: str = NO_DESTINATION
    contact_name: str
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_instagram: Optional[str] = None
    assigned_seller_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def fit_column_widths(self) -> "LeadFields":
        for name, width in LEAD_COLUMN_WIDTHS.items():
            value = getattr(self, name, None)
            if isinstance(value, str) and len(value) > width:
                setattr(self, name, value[:width])
        return self


class MappedCard(BaseModel):
    kind: Literal["mapped"] = "mapped"
    external_id: str
    fields: LeadFields


class DeleteCard(BaseModel):
    kind: Literal["delete"] = "delete"
    external_id: str
    reason: str = "archived"


class SkipCard(BaseModel):
    kind: Literal["skip"] = "skip"
    external_id: str
    reason: str


CardMapping = Annotated[Union[MappedCard, DeleteCard, SkipCard], Field(discriminator="kind")]


# -- Text parsing ------------------------------------------------------

def split_title(title: str) -> list[str]:
    return [part.strip() for part in TITLE_SPLIT_RE.split(title or "") if part.strip()]


def parse_contact_name(title: str) -> str:
    parts = split_title(title)
    if parts:
        return parts[0]
    return (title or "").strip() or UNNAMED_CARD


def parse_structured_fields(desc: str) -> dict[str, str]:
    """Labelled lines produced by form automations, keyed by field name."""
    fields = {}
    if not desc:
        return fields
    for key, pattern in STRUCTURED_FIELD_PATTERNS.items():
        match = pattern.search(desc)
        if match and match.group(1).strip():
            fields[key] = match.group(1).strip()
    return fields


def _strip_structured_lines(desc: str) -> str:
    """Drop labelled lines so dates and budgets are not read as phone numbers."""
    kept = []
    for line in (desc or "").splitlines():
        if any(pattern.search(line) for pattern in STRUCTURED_FIELD_PATTERNS.values()):
            continue
        kept.append(line)
    return "\n".join(kept)


def extract_phone(text: str) -> Optional[str]:
    for match in PHONE_RE.finditer(text or ""):
        candidate = match.group(0).strip()
        if sum(ch.isdigit() for ch in candidate) >= MIN_PHONE_DIGITS:
            return candidate
    return None


def extract_email(text: str) -> Optional[str]:
    match = EMAIL_RE.search(text or "")
    return match.group(0) if match else None


def extract_instagram(text: str) -> Optional[str]:
    """Standalone @handle; the local part of an email address never matches."""
    match = INSTAGRAM_HANDLE_RE.search(text or "")
    if not match:
        return None
    return match.group(1).rstrip(".") or None


def _clean_handle(value: str) -> Optional[str]:
    handle = value.strip().lstrip("@").strip()
    return handle or None


def parse_destination(card: TrelloCard, structured: dict[str, str]) -> str:
    if structured.get("destination"):
        return structured["destination"]

    for label in card.labels:
        name = (label.name or "").strip()
        if name and name.lower() not in PRIORITY_LABELS:
            return name

    parts = split_title(card.name)
    if len(parts) > 1:
        return parts[1]

    return NO_DESTINATION


# -- Lookups -----------------------------------------------------------

def status_for_list(list_id: str, status_mapping: dict) -> str:
    status = status_mapping.get(list_id)
    if not status:
        return DEFAULT_STATUS
    if status not in LEAD_STATUSES:
        logger.warning("Unknown status %r mapped for list %s, using %s", status, list_id, DEFAULT_STATUS)
        return DEFAULT_STATUS
    return status


def region_for_list(list_id: str, region_mapping: dict) -> str:
    return region_mapping.get(list_id) or DEFAULT_REGION


def status_for_list_name(list_name: str) -> str:
    """Best-guess status for a list nobody has mapped yet."""
    name = (list_name or "").lower()
    for status, keywords in LIST_NAME_STATUS_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return status
    return DEFAULT_STATUS


def match_seller(
    member_name: str, candidates: list[SellerCandidate]
) -> Optional[SellerCandidate]:
    """
    Match a board member name to a user.
    Tried in order for each candidate: same name ignoring case and spaces,
    one containing the other, same first word.
    """
    member_name = (member_name or "").strip()
    if not member_name:
        return None

    member_lower = member_name.lower()
    member_compact = re.sub(r"\s+", "", member_lower)
    member_first = member_lower.split()[0]

    for candidate in candidates:
        seller_lower = (candidate.name or "").strip().lower()
        if not seller_lower:
            continue
        seller_compact = re.sub(r"\s+", "", seller_lower)
        if seller_compact == member_compact:
            return candidate
        if seller_compact in member_compact or member_compact in seller_compact:
            return candidate
        if seller_lower.split()[0] == member_first:
            return candidate
    return None


# -- Snapshot ----------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_board_data(card: TrelloCard, structured: dict[str, str]) -> dict:
    """JSON snapshot of the card as observed. Stable for an unchanged card."""
    checklists = []
    for checklist in card.checklists:
        items = checklist.get("checkItems") or []
        checklists.append({
            "name": checklist.get("name", ""),
            "completed": sum(1 for item in items if item.get("state") == "complete"),
            "total": len(items),
        })

    custom_fields = {
        item["idCustomField"]: item["value"]
        for item in card.custom_field_items
        if item.get("idCustomField") and item.get("value")
    }

    extra = card.model_extra or {}
    board = extra.get("board") if isinstance(extra.get("board"), dict) else None

    return {
        "id": card.id,
        "name": card.name,
        "url": card.url,
        "short_url": card.short_url,
        "id_list": card.list_id,
        "id_board": card.id_board,
        "closed": card.closed,
        "date_last_activity": _iso(card.date_last_activity),
        "labels": [
            {"id": label.id, "name": label.name, "color": label.color}
            for label in card.labels
        ],
        "members": [
            {"id": member.id, "full_name": member.full_name, "username": member.username}
            for member in card.members
        ],
        "due": _iso(card.due),
        "due_complete": card.due_complete,
        "start": _iso(card.start),
        "attachments": [
            {"name": att.get("name"), "url": att.get("url"), "mime_type": att.get("mimeType")}
            for att in card.attachments
        ],
        "checklists": checklists,
        "custom_fields": custom_fields,
        "list": {"id": card.list_ref.id, "name": card.list_ref.name} if card.list_ref else None,
        "board": {"id": board.get("id"), "name": board.get("name")} if board else None,
        "structured_fields": structured,
    }


# -- Entry point -------------------------------------------------------

def map_card(
    card: TrelloCard,
    config,
    sellers: Optional[list[SellerCandidate]] = None,
) -> CardMapping:
    """Translate one card using the tenant's list mappings."""
    if card.closed:
        return DeleteCard(external_id=card.id)

    list_id = card.list_id
    if not list_id:
        logger.warning("Card %s has no list id, skipping", card.id)
        return SkipCard(external_id=card.id, reason="missing list id")

    desc = card.desc or ""
    structured = parse_structured_fields(desc)
    free_text = f"{_strip_structured_lines(desc)} {card.name}"

    instagram = None
    if structured.get("instagram"):
        instagram = _clean_handle(structured["instagram"])
    if not instagram:
        instagram = extract_instagram(free_text)

    seller_id = None
    if card.members and sellers:
        member = card.members[0]
        seller = match_seller(member.full_name or member.username, sellers)
        if seller is not None:
            seller_id = seller.id

    fields = LeadFields(
        trello_list_id=list_id,
        list_name=card.list_name,
        trello_url=card.link,
        board_data=build_board_data(card, structured),
        status=status_for_list(list_id, config.list_status_mapping),
        region=region_for_list(list_id, config.list_region_mapping),
        destination=parse_destination(card, structured),
        contact_name=parse_contact_name(card.name),
        contact_phone=structured.get("whatsapp") or extract_phone(free_text),
        contact_email=extract_email(free_text),
        contact_instagram=instagram,
        assigned_seller_id=seller_id,
        notes=desc or None,
    )
    return MappedCard(external_id=card.id, fields=fields)
