"""
API request/response schemas for the sync, webhook and board admin endpoints.
Sync summaries are serialized in camelCase for the dashboard client.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(_CamelModel):
    tenant_id: str = Field(alias="tenantId")


class SyncSummary(_CamelModel):
    total: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    skipped: int = 0
    time_elapsed_ms: int = 0
    cards_total: int = 0
    cards_processed: int = 0
    timed_out: bool = False
    # Full sync only
    orphaned_deleted: Optional[int] = None
    lists_auto_mapped: Optional[int] = None


class SyncResponse(_CamelModel):
    success: bool = True
    quick: bool
    message: str = ""
    summary: SyncSummary


class WebhookAck(BaseModel):
    """Body returned to the provider. Always sent with HTTP 200."""
    model_config = ConfigDict(extra="allow")

    received: bool = True
    skipped: bool = False
    reason: Optional[str] = None
    action: Optional[str] = None
    card_id: Optional[str] = None
    lead_id: Optional[str] = None
    created: Optional[bool] = None
    deleted: Optional[bool] = None
    error: Optional[str] = None
    # Audit only, never sent back to the provider
    tenant_id: Optional[str] = Field(default=None, exclude=True)


class WebhookRepairRequest(_CamelModel):
    tenant_id: str = Field(alias="tenantId")


class WebhookRepairResult(_CamelModel):
    webhook_id: str
    callback_url: str
    board_id_long: str
    action: str  # kept, created
    deleted_webhook_ids: list[str] = Field(default_factory=list)


class BoardWebhookSummary(_CamelModel):
    id: str
    id_model: str
    callback_url: str
    active: bool
    description: Optional[str] = None
    matches_board: bool = False
    matches_callback: bool = False


class ValidateRequest(_CamelModel):
    api_key: str = Field(alias="apiKey")
    token: str
    board_id: str = Field(alias="boardId")


class ListSummary(_CamelModel):
    id: str
    name: str


class ValidateResponse(_CamelModel):
    valid: bool
    member_username: Optional[str] = None
    member_full_name: Optional[str] = None
    board_id: Optional[str] = None
    board_id_long: Optional[str] = None
    board_short_link: Optional[str] = None
    board_name: Optional[str] = None
    lists: list[ListSummary] = Field(default_factory=list)
    error: Optional[str] = None
