"""
Lead upsert gateway - idempotent writes keyed by (tenant, source, external id).

Every predicate carries tenant_id: a card id seen on one tenant's board can
never touch another tenant's lead. Upserts only assign attributes whose value
differs, so replaying an observation leaves the row (and updated_at) as is.
Writes are flushed; the caller commits.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import delete, select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.alert import Alert
from src.models.communication import Communication
from src.models.document import Document
from src.models.lead import Lead, SOURCE_TRELLO
from src.models.ledger_movement import LedgerMovement
from src.models.operation import Operation
from src.models.quotation import Quotation
from src.models.user import SELLER_ROLES, User
from src.services.card_mapper import LeadFields, SellerCandidate

logger = logging.getLogger(__name__)

# Deleted together with the lead
OWNED_CHILD_MODELS = (Document, Alert, Quotation, Communication)
# Kept, with lead_id set to NULL
SURVIVING_CHILD_MODELS = (Operation, LedgerMovement)


class UpsertResult(BaseModel):
    lead_id: uuid.UUID
    created: bool
    changed: bool


async def get_lead(
    db: AsyncSession, tenant_id: uuid.UUID, external_id: str
) -> Optional[Lead]:
    result = await db.execute(
        select(Lead).where(
            Lead.tenant_id == tenant_id,
            Lead.source == SOURCE_TRELLO,
            Lead.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_lead(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    external_id: str,
    fields: LeadFields,
) -> UpsertResult:
    """Insert the lead, or update only the columns whose value changed."""
    values = fields.model_dump()
    lead = await get_lead(db, tenant_id, external_id)

    if lead is None:
        try:
            async with db.begin_nested():
                lead = Lead(
                    tenant_id=tenant_id,
                    source=SOURCE_TRELLO,
                    external_id=external_id,
                    **values,
                )
                db.add(lead)
                await db.flush()
        except IntegrityError:
            # Another observer of the same card inserted it after our lookup;
            # apply this observation on top of theirs
            lead = await get_lead(db, tenant_id, external_id)
            if lead is None:
                raise
            logger.info(
                "Lead for card %s inserted concurrently, updating lead=%s",
                external_id, str(lead.id)[:8],
            )
        else:
            logger.info(
                "Lead created from card %s: lead=%s tenant=%s status=%s",
                external_id, str(lead.id)[:8], str(tenant_id)[:8], lead.status,
            )
            return UpsertResult(lead_id=lead.id, created=True, changed=True)

    changed_columns = []
    for column, value in values.items():
        if getattr(lead, column) != value:
            setattr(lead, column, value)
            changed_columns.append(column)

    if changed_columns:
        lead.updated_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info(
            "Lead updated from card %s: lead=%s changed=%s",
            external_id, str(lead.id)[:8], ",".join(changed_columns),
        )
    else:
        logger.debug("Lead %s unchanged for card %s", str(lead.id)[:8], external_id)

    return UpsertResult(lead_id=lead.id, created=False, changed=bool(changed_columns))


async def _delete_lead_ids(
    db: AsyncSession, tenant_id: uuid.UUID, lead_ids: list[uuid.UUID]
) -> int:
    """Delete leads and their dependents in one pass."""
    if not lead_ids:
        return 0

    for model in OWNED_CHILD_MODELS:
        await db.execute(
            delete(model).where(model.tenant_id == tenant_id, model.lead_id.in_(lead_ids))
        )
    for model in SURVIVING_CHILD_MODELS:
        await db.execute(
            update(model)
            .where(model.tenant_id == tenant_id, model.lead_id.in_(lead_ids))
            .values(lead_id=None)
        )

    result = await db.execute(
        delete(Lead).where(Lead.tenant_id == tenant_id, Lead.id.in_(lead_ids))
    )
    await db.flush()
    return result.rowcount or 0


async def delete_lead(db: AsyncSession, tenant_id: uuid.UUID, external_id: str) -> bool:
    """Hard-delete the tenant's lead for a card. False if there was none."""
    lead = await get_lead(db, tenant_id, external_id)
    if lead is None:
        return False

    lead_id = lead.id
    # Detach so the ORM does not try to refresh a row deleted by a bulk statement
    db.expunge(lead)
    deleted = await _delete_lead_ids(db, tenant_id, [lead_id])
    if deleted:
        logger.info(
            "Lead deleted for card %s: lead=%s tenant=%s",
            external_id, str(lead_id)[:8], str(tenant_id)[:8],
        )
    return deleted > 0


async def delete_leads_in_list(db: AsyncSession, tenant_id: uuid.UUID, list_id: str) -> int:
    """Delete every board lead of the tenant sitting in an archived list."""
    result = await db.execute(
        select(Lead.id).where(
            Lead.tenant_id == tenant_id,
            Lead.source == SOURCE_TRELLO,
            Lead.trello_list_id == list_id,
        )
    )
    lead_ids = list(result.scalars().all())
    deleted = await _delete_lead_ids(db, tenant_id, lead_ids)
    if deleted:
        logger.info(
            "Deleted %d leads from archived list %s tenant=%s",
            deleted, list_id, str(tenant_id)[:8],
        )
    return deleted


async def delete_orphaned_leads(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    open_card_ids: Iterable[str],
    active_list_ids: Iterable[str],
) -> int:
    """
    Delete board leads whose card is no longer open on the board,
    or whose list is no longer open.
    """
    open_card_ids = set(open_card_ids)
    active_list_ids = set(active_list_ids)

    result = await db.execute(
        select(Lead.id, Lead.external_id, Lead.trello_list_id).where(
            Lead.tenant_id == tenant_id,
            Lead.source == SOURCE_TRELLO,
        )
    )
    orphan_ids = [
        lead_id
        for lead_id, external_id, list_id in result.all()
        if external_id not in open_card_ids
        or (list_id is not None and list_id not in active_list_ids)
    ]
    deleted = await _delete_lead_ids(db, tenant_id, orphan_ids)
    if deleted:
        logger.info("Deleted %d orphaned leads tenant=%s", deleted, str(tenant_id)[:8])
    return deleted


async def load_seller_candidates(db: AsyncSession, tenant_id: uuid.UUID) -> list[SellerCandidate]:
    """Active users of the tenant a card member may be matched to."""
    result = await db.execute(
        select(User.id, User.name)
        .where(
            User.tenant_id == tenant_id,
            User.is_active.is_(True),
            User.role.in_(SELLER_ROLES),
        )
        .order_by(User.created_at)
    )
    return [SellerCandidate(id=user_id, name=name) for user_id, name in result.all()]


async def leads_missing_list_name(
    db: AsyncSession, tenant_id: uuid.UUID, list_names: dict[str, str]
) -> list[Lead]:
    """Board leads whose stored list name is empty or differs from the board."""
    result = await db.execute(
        select(Lead).where(
            Lead.tenant_id == tenant_id,
            Lead.source == SOURCE_TRELLO,
            Lead.trello_list_id.is_not(None),
            or_(Lead.list_name.is_(None), Lead.list_name == ""),
        )
    )
    stale = list(result.scalars().all())

    result = await db.execute(
        select(Lead).where(
            Lead.tenant_id == tenant_id,
            Lead.source == SOURCE_TRELLO,
            Lead.trello_list_id.in_(list(list_names)),
            Lead.list_name.is_not(None),
        )
    )
    for lead in result.scalars().all():
        if lead.list_name and lead.list_name != list_names.get(lead.trello_list_id):
            stale.append(lead)
    return stale
