"""
Event log model - audit trail for sync runs and webhook repairs.
One row per quick/full run or lifecycle repair, with its summary in `data`.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class EventLog(Base):
    __tablename__ = "event_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id")
    )

    action: Mapped[str] = mapped_column(
        String(100), nullable=False
    )  # board_sync_quick, board_sync_full, webhook_repair, list_names_backfill
    status: Mapped[str] = mapped_column(
        String(20), default="success"
    )  # success, partial, failure
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    message: Mapped[Optional[str]] = mapped_column(Text)
    data: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_events_tenant_id", "tenant_id"),
        Index("ix_events_action", "action"),
        Index("ix_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EventLog {self.action} status={self.status}>"
