"""Initial schema: tenants, users, board settings, leads and their dependents.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _tenant_column() -> sa.Column:
    return sa.Column(
        "tenant_id", postgresql.UUID(as_uuid=True),
        sa.ForeignKey("tenants.id"), nullable=False,
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
    )


def _owned_lead_column() -> sa.Column:
    return sa.Column(
        "lead_id", postgresql.UUID(as_uuid=True),
        sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False,
    )


def _surviving_lead_column() -> sa.Column:
    return sa.Column(
        "lead_id", postgresql.UUID(as_uuid=True),
        sa.ForeignKey("leads.id", ondelete="SET NULL"), nullable=True,
    )


def upgrade() -> None:
    # Tenants
    op.create_table(
        "tenants",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at_column(),
    )

    # Users (read only by the sync engine)
    op.create_table(
        "users",
        _id_column(),
        _tenant_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="SELLER"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at_column(),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    # Board mapping configuration, one per tenant
    op.create_table(
        "board_settings",
        _id_column(),
        sa.Column(
            "tenant_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.id"), nullable=False, unique=True,
        ),
        sa.Column("api_key_encrypted", sa.Text),
        sa.Column("token_encrypted", sa.Text),
        sa.Column("board_id", sa.String(64)),
        sa.Column("board_id_long", sa.String(64)),
        sa.Column("list_status_mapping", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("list_region_mapping", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("webhook_id", sa.String(64)),
        sa.Column("webhook_url", sa.Text),
        sa.Column("quick_sync_window_minutes", sa.Integer),
        sa.Column("quick_sync_max_cards", sa.Integer),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Leads
    op.create_table(
        "leads",
        _id_column(),
        _tenant_column(),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("external_id", sa.String(64)),
        sa.Column("trello_list_id", sa.String(64)),
        sa.Column("list_name", sa.String(255)),
        sa.Column("trello_url", sa.Text),
        sa.Column("board_data", postgresql.JSONB),
        sa.Column("status", sa.String(20), nullable=False, server_default="NEW"),
        sa.Column("region", sa.String(30), nullable=False, server_default="OTHER"),
        sa.Column("destination", sa.String(255)),
        sa.Column("contact_name", sa.String(255), nullable=False),
        sa.Column("contact_phone", sa.String(50)),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("contact_instagram", sa.String(100)),
        sa.Column(
            "assigned_seller_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"), nullable=True,
        ),
        sa.Column("notes", sa.Text),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id", "source", "external_id", name="uq_leads_tenant_source_external",
        ),
    )
    op.create_index("ix_leads_tenant_id", "leads", ["tenant_id"])
    op.create_index("ix_leads_status", "leads", ["status"])
    op.create_index("ix_leads_tenant_list", "leads", ["tenant_id", "trello_list_id"])
    op.create_index("ix_leads_created_at", "leads", ["created_at"])

    # Owned by a lead - deleted with it
    op.create_table(
        "documents",
        _id_column(),
        _tenant_column(),
        _owned_lead_column(),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.Text),
        sa.Column("document_type", sa.String(50)),
        _created_at_column(),
    )
    op.create_index("ix_documents_lead_id", "documents", ["lead_id"])

    op.create_table(
        "alerts",
        _id_column(),
        _tenant_column(),
        _owned_lead_column(),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("message", sa.Text),
        sa.Column("status", sa.String(20), server_default="PENDING"),
        _created_at_column(),
    )
    op.create_index("ix_alerts_lead_id", "alerts", ["lead_id"])

    op.create_table(
        "quotations",
        _id_column(),
        _tenant_column(),
        _owned_lead_column(),
        sa.Column("amount", sa.Float),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("status", sa.String(20), server_default="DRAFT"),
        _created_at_column(),
    )
    op.create_index("ix_quotations_lead_id", "quotations", ["lead_id"])

    op.create_table(
        "communications",
        _id_column(),
        _tenant_column(),
        _owned_lead_column(),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("direction", sa.String(10), server_default="outbound"),
        sa.Column("content", sa.Text),
        _created_at_column(),
    )
    op.create_index("ix_communications_lead_id", "communications", ["lead_id"])

    # Outlive the lead - lead_id nulled
    op.create_table(
        "operations",
        _id_column(),
        _tenant_column(),
        _surviving_lead_column(),
        sa.Column("file_code", sa.String(50), nullable=False),
        sa.Column("destination", sa.String(255)),
        sa.Column("status", sa.String(20), server_default="PRE_RESERVATION"),
        _created_at_column(),
    )
    op.create_index("ix_operations_lead_id", "operations", ["lead_id"])

    op.create_table(
        "ledger_movements",
        _id_column(),
        _tenant_column(),
        _surviving_lead_column(),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("concept", sa.Text),
        _created_at_column(),
    )
    op.create_index("ix_ledger_movements_lead_id", "ledger_movements", ["lead_id"])

    # Webhook audit trail, records every provider callback before processing
    op.create_table(
        "webhook_events",
        _id_column(),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column(
            "tenant_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.id"), nullable=True,
        ),
        sa.Column("board_id", sa.String(64), nullable=True),
        sa.Column("card_id", sa.String(64), nullable=True),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_tenant_id", "webhook_events", ["tenant_id"])
    op.create_index("ix_webhook_events_card_id", "webhook_events", ["card_id"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])

    # Sync run / repair audit log
    op.create_table(
        "event_logs",
        _id_column(),
        sa.Column(
            "tenant_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.id"), nullable=True,
        ),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), server_default="success"),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("message", sa.Text),
        sa.Column("data", postgresql.JSONB),
        _created_at_column(),
    )
    op.create_index("ix_events_tenant_id", "event_logs", ["tenant_id"])
    op.create_index("ix_events_action", "event_logs", ["action"])
    op.create_index("ix_events_created_at", "event_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "event_logs",
        "webhook_events",
        "ledger_movements",
        "operations",
        "communications",
        "quotations",
        "alerts",
        "documents",
        "leads",
        "board_settings",
        "users",
        "tenants",
    ):
        op.drop_table(table)
