"""
Mapping configuration store - per-tenant board settings.

Every sync and webhook call receives an explicit BoardConfig value built here
(decrypted credentials, both board aliases, list mappings and quick sync knobs).
Writes are flushed, not committed; the caller owns the transaction.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.integrations.trello import TrelloAPIError, TrelloClient
from src.models.board_settings import BoardSettings
from src.schemas.api_responses import ListSummary, ValidateResponse
from src.utils.encryption import decrypt_value, encrypt_value

logger = logging.getLogger(__name__)


class BoardConfigError(Exception):
    """Tenant has no usable board configuration."""


class BoardConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: uuid.UUID
    api_key: str
    token: str
    board_id: str
    board_id_long: Optional[str] = None
    list_status_mapping: dict[str, str] = Field(default_factory=dict)
    list_region_mapping: dict[str, str] = Field(default_factory=dict)
    webhook_id: Optional[str] = None
    webhook_url: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    quick_sync_window_minutes: int = 10
    quick_sync_max_cards: int = 50

    @property
    def board_aliases(self) -> set[str]:
        return {alias for alias in (self.board_id, self.board_id_long) if alias}

    @property
    def canonical_board_id(self) -> str:
        return self.board_id_long or self.board_id

    def matches_board(self, board_id: Optional[str]) -> bool:
        return any(board_ids_match(alias, board_id) for alias in self.board_aliases)

    def client(self) -> TrelloClient:
        return TrelloClient(api_key=self.api_key, token=self.token)


def board_ids_match(a: Optional[str], b: Optional[str]) -> bool:
    """Exact alias comparison; surrounding whitespace is ignored."""
    if not a or not b:
        return False
    return a.strip() == b.strip()


def _parse_tenant_id(tenant_id) -> uuid.UUID:
    if isinstance(tenant_id, uuid.UUID):
        return tenant_id
    try:
        return uuid.UUID(str(tenant_id))
    except ValueError:
        raise BoardConfigError(f"Invalid tenant id: {tenant_id!r}")


def _to_config(row: BoardSettings) -> BoardConfig:
    settings = get_settings()
    api_key = decrypt_value(row.api_key_encrypted)
    token = decrypt_value(row.token_encrypted)
    if not api_key or not token:
        raise BoardConfigError(
            f"Board credentials missing for tenant {str(row.tenant_id)[:8]}"
        )
    if not row.board_id:
        raise BoardConfigError(
            f"Board id missing for tenant {str(row.tenant_id)[:8]}"
        )

    return BoardConfig(
        tenant_id=row.tenant_id,
        api_key=api_key,
        token=token,
        board_id=row.board_id,
        board_id_long=row.board_id_long,
        list_status_mapping=dict(row.list_status_mapping or {}),
        list_region_mapping=dict(row.list_region_mapping or {}),
        webhook_id=row.webhook_id,
        webhook_url=row.webhook_url,
        last_sync_at=row.last_sync_at,
        quick_sync_window_minutes=(
            row.quick_sync_window_minutes or settings.quick_sync_window_minutes
        ),
        quick_sync_max_cards=row.quick_sync_max_cards or settings.quick_sync_max_cards,
    )


async def _get_row(db: AsyncSession, tenant_id) -> Optional[BoardSettings]:
    result = await db.execute(
        select(BoardSettings).where(BoardSettings.tenant_id == _parse_tenant_id(tenant_id))
    )
    return result.scalar_one_or_none()


async def _require_row(db: AsyncSession, tenant_id) -> BoardSettings:
    row = await _get_row(db, tenant_id)
    if row is None:
        raise BoardConfigError(f"No board configured for tenant {str(tenant_id)[:8]}")
    return row


async def get_board_config(db: AsyncSession, tenant_id) -> BoardConfig:
    """Load and validate the tenant's board configuration."""
    return _to_config(await _require_row(db, tenant_id))


async def list_board_configs(db: AsyncSession) -> list[BoardConfig]:
    """All usable configurations. Incomplete rows are logged and left out."""
    result = await db.execute(select(BoardSettings).order_by(BoardSettings.created_at))
    configs = []
    for row in result.scalars().all():
        try:
            configs.append(_to_config(row))
        except BoardConfigError as e:
            logger.warning("Skipping board settings %s: %s", str(row.id)[:8], str(e))
    return configs


async def find_board_config_by_board(
    db: AsyncSession,
    board_id: Optional[str],
    resolve: bool = True,
) -> Optional[BoardConfig]:
    """
    Map a board id (short alias or canonical) to the tenant that owns it.
    When no stored alias matches and resolve is set, each configuration's
    credentials are used to look the board up at the provider, and the
    canonical id is cached on the match.
    """
    if not board_id:
        return None

    configs = await list_board_configs(db)
    for config in configs:
        if config.matches_board(board_id):
            return config

    if not resolve:
        return None

    for config in configs:
        try:
            board = await config.client().get_board(board_id)
        except TrelloAPIError as e:
            logger.info(
                "Board lookup with tenant %s credentials failed: %s",
                str(config.tenant_id)[:8], str(e),
            )
            continue
        if board is None:
            continue
        if config.matches_board(board.id) or config.matches_board(board.short_link):
            logger.info(
                "Resolved board %s to tenant %s via provider",
                board_id, str(config.tenant_id)[:8],
            )
            if config.board_id_long != board.id:
                await set_canonical_board_id(db, config.tenant_id, board.id)
                config = config.model_copy(update={"board_id_long": board.id})
            return config

    return None


async def set_canonical_board_id(db: AsyncSession, tenant_id, board_id_long: str) -> None:
    row = await _require_row(db, tenant_id)
    row.board_id_long = board_id_long
    await db.flush()


async def set_webhook_registration(
    db: AsyncSession, tenant_id, webhook_id: str, webhook_url: str
) -> None:
    row = await _require_row(db, tenant_id)
    row.webhook_id = webhook_id
    row.webhook_url = webhook_url
    await db.flush()


async def clear_webhook_registration(db: AsyncSession, tenant_id) -> None:
    row = await _require_row(db, tenant_id)
    row.webhook_id = None
    row.webhook_url = None
    await db.flush()


async def mark_synced(
    db: AsyncSession, tenant_id, at: Optional[datetime] = None
) -> datetime:
    """Record the sync checkpoint (observability only)."""
    row = await _require_row(db, tenant_id)
    row.last_sync_at = at or datetime.now(timezone.utc)
    await db.flush()
    return row.last_sync_at


async def save_list_mappings(
    db: AsyncSession,
    tenant_id,
    status_mapping: Optional[dict] = None,
    region_mapping: Optional[dict] = None,
) -> None:
    """Merge new list entries into the stored mappings."""
    row = await _require_row(db, tenant_id)
    if status_mapping:
        row.list_status_mapping = {**(row.list_status_mapping or {}), **status_mapping}
    if region_mapping:
        row.list_region_mapping = {**(row.list_region_mapping or {}), **region_mapping}
    await db.flush()


async def upsert_board_settings(
    db: AsyncSession,
    tenant_id,
    api_key: str,
    token: str,
    board_id: str,
    list_status_mapping: Optional[dict] = None,
    list_region_mapping: Optional[dict] = None,
    board_id_long: Optional[str] = None,
) -> BoardSettings:
    """Create or replace the tenant's credentials and board id."""
    tenant_uuid = _parse_tenant_id(tenant_id)
    row = await _get_row(db, tenant_uuid)
    if row is None:
        row = BoardSettings(
            tenant_id=tenant_uuid,
            list_status_mapping={},
            list_region_mapping={},
        )
        db.add(row)

    if not board_ids_match(row.board_id, board_id):
        # A different board invalidates the canonical id and webhook
        row.board_id_long = None
        row.webhook_id = None
        row.webhook_url = None

    row.api_key_encrypted = encrypt_value(api_key)
    row.token_encrypted = encrypt_value(token)
    row.board_id = board_id.strip()
    if board_id_long:
        row.board_id_long = board_id_long
    if list_status_mapping is not None:
        row.list_status_mapping = list_status_mapping
    if list_region_mapping is not None:
        row.list_region_mapping = list_region_mapping

    await db.flush()
    logger.info("Board settings saved for tenant %s board=%s", str(tenant_uuid)[:8], board_id)
    return row


async def validate_credentials(api_key: str, token: str, board_id: str) -> ValidateResponse:
    """Check credentials against the provider: member, board and its open lists."""
    client = TrelloClient(api_key=api_key, token=token)
    try:
        member = await client.get_member_me()
        board = await client.get_board(board_id)
        if board is None:
            return ValidateResponse(
                valid=False,
                member_username=member.username,
                member_full_name=member.full_name,
                error=f"Board {board_id} not found or not accessible",
            )
        lists = await client.get_board_lists(board.id)
    except TrelloAPIError as e:
        logger.info("Credential validation failed for board %s: %s", board_id, str(e))
        error = "Invalid API key or token" if e.status_code in (400, 401) else str(e)
        return ValidateResponse(valid=False, error=error)

    return ValidateResponse(
        valid=True,
        member_username=member.username,
        member_full_name=member.full_name,
        board_id=board_id,
        board_id_long=board.id,
        board_short_link=board.short_link,
        board_name=board.name,
        lists=[ListSummary(id=lst.id, name=lst.name) for lst in lists],
    )
