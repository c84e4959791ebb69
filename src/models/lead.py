"""
Lead model - every prospect, whichever channel it came from.
Board-synced leads are keyed by (tenant_id, source, external_id); that triple is
the idempotency key for webhook events and reconciliation runs alike.
Status vocabulary: NEW -> IN_PROGRESS -> QUOTED -> WON | LOST.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

SOURCE_TRELLO = "trello"
SOURCE_MANYCHAT = "manychat"
SOURCE_MANUAL = "manual"
SOURCE_WEB = "web"

LEAD_STATUSES = ("NEW", "IN_PROGRESS", "QUOTED", "WON", "LOST")
DEFAULT_STATUS = "NEW"

DEFAULT_REGION = "OTHER"


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )

    # Origin
    source: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # trello, manychat, manual, web
    external_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Board linkage
    trello_list_id: Mapped[Optional[str]] = mapped_column(String(64))
    list_name: Mapped[Optional[str]] = mapped_column(String(255))
    trello_url: Mapped[Optional[str]] = mapped_column(Text)
    board_data: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Derived fields
    status: Mapped[str] = mapped_column(String(20), default=DEFAULT_STATUS, nullable=False)
    region: Mapped[str] = mapped_column(String(30), default=DEFAULT_REGION, nullable=False)
    destination: Mapped[Optional[str]] = mapped_column(String(255))

    # Contact
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    contact_instagram: Mapped[Optional[str]] = mapped_column(String(100))

    assigned_seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "source", "external_id", name="uq_leads_tenant_source_external"),
        Index("ix_leads_tenant_id", "tenant_id"),
        Index("ix_leads_status", "status"),
        Index("ix_leads_tenant_list", "tenant_id", "trello_list_id"),
        Index("ix_leads_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Lead {self.source}:{self.external_id} status={self.status}>"
