"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.tenant import Tenant
from src.models.user import User
from src.models.board_settings import BoardSettings
from src.models.lead import Lead
from src.models.document import Document
from src.models.alert import Alert
from src.models.quotation import Quotation
from src.models.communication import Communication
from src.models.operation import Operation
from src.models.ledger_movement import LedgerMovement
from src.models.webhook_event import WebhookEvent
from src.models.event_log import EventLog

__all__ = [
    "Tenant",
    "User",
    "BoardSettings",
    "Lead",
    "Document",
    "Alert",
    "Quotation",
    "Communication",
    "Operation",
    "LedgerMovement",
    "WebhookEvent",
    "EventLog",
]
