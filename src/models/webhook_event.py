"""
Audit trail of provider callbacks. Every delivery that passes the rate limit
and signature check is recorded before it is applied, so missed or duplicated
deliveries can be traced per card and replayed from raw_payload.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from src.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    source = Column(String(50), nullable=False, index=True)
    # Provider action type (createCard, updateCard, deleteCard, updateList...)
    event_type = Column(String(64), nullable=False)
    payload_hash = Column(String(64), nullable=False, index=True)
    raw_payload = Column(JSONB, nullable=False)

    # Filled once the board is matched to a tenant
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=True, index=True)
    board_id = Column(String(64), nullable=True)
    card_id = Column(String(64), nullable=True, index=True)

    # received -> processing -> completed | skipped | failed
    processing_status = Column(String(20), nullable=False, default="received", server_default="received")
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
