"""
Board settings model - the per-tenant mapping configuration for the external board.
Credentials are stored Fernet-encrypted (see src/utils/encryption.py).
The provider exposes a short alias and a canonical long id for the same board;
both are kept and treated as equivalent.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.database import Base


class BoardSettings(Base):
    __tablename__ = "board_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, unique=True
    )

    # Credentials
    api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text)
    token_encrypted: Mapped[Optional[str]] = mapped_column(Text)

    # Board identity
    board_id: Mapped[Optional[str]] = mapped_column(String(64))
    board_id_long: Mapped[Optional[str]] = mapped_column(String(64))

    # list_id -> status / region
    list_status_mapping: Mapped[dict] = mapped_column(JSONB, default=dict)
    list_region_mapping: Mapped[dict] = mapped_column(JSONB, default=dict)

    # Webhook registration cache (null = not registered)
    webhook_id: Mapped[Optional[str]] = mapped_column(String(64))
    webhook_url: Mapped[Optional[str]] = mapped_column(Text)

    # Quick sync overrides (null = use global settings)
    quick_sync_window_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    quick_sync_max_cards: Mapped[Optional[int]] = mapped_column(Integer)

    # Observability checkpoint
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tenant: Mapped["Tenant"] = relationship(back_populates="board_settings")

    def __repr__(self) -> str:
        return f"<BoardSettings board={self.board_id} tenant={str(self.tenant_id)[:8]}>"
