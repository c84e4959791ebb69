"""
Trello REST API client - the board provider.

Auth: key + token query parameters on every call.
Docs: https://developer.atlassian.com/cloud/trello/rest/
Retries: 429 honours Retry-After (capped), 5xx and network errors back off
exponentially. 4xx other than 429 fail immediately.
"""
import asyncio
import logging
from typing import Optional

import httpx

from src.config import get_settings
from src.schemas.trello import (
    CardSummary,
    TrelloBoard,
    TrelloCard,
    TrelloList,
    TrelloMemberMe,
    TrelloWebhook,
)

logger = logging.getLogger(__name__)

CARD_FETCH_PARAMS = {
    "fields": "all",
    "members": "true",
    "member_fields": "fullName,username",
    "attachments": "true",
    "attachment_fields": "name,url,mimeType,date",
    "checklists": "all",
    "checklist_fields": "name",
    "customFieldItems": "true",
    "board": "true",
    "board_fields": "name,url",
    "list": "true",
    "list_fields": "name,pos,closed",
}

CARD_SUMMARY_FIELDS = "id,name,dateLastActivity,idList"


class TrelloAPIError(Exception):
    """Provider call failed after retries, or with a non-retryable status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TrelloClient:
    """Thin async wrapper around the endpoints the sync engine consumes."""

    def __init__(
        self,
        api_key: str,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_wait: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_key = api_key
        self.token = token
        self.base_url = (base_url or settings.trello_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.trello_timeout_seconds
        self.max_retries = max(1, max_retries if max_retries is not None else settings.trello_max_retries)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None
            else settings.trello_retry_base_delay_seconds
        )
        self.retry_max_wait = (
            retry_max_wait if retry_max_wait is not None
            else settings.trello_retry_max_wait_seconds
        )

    def _backoff_seconds(self, attempt: int, retry_after: Optional[str] = None) -> float:
        if retry_after:
            try:
                return min(float(retry_after), self.retry_max_wait)
            except ValueError:
                pass
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_wait)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        not_found_ok: bool = False,
    ):
        """
        Authenticated request with retry.
        Returns decoded JSON, or None on 404 when not_found_ok is set.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        query = {"key": self.api_key, "token": self.token}
        if params:
            query.update(params)

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, params=query, json=json)
            except httpx.HTTPError as e:
                if is_last:
                    raise TrelloAPIError(f"{method} {path} failed: {e}") from e
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    "Trello network error on %s %s (attempt %d/%d), retrying in %.1fs: %s",
                    method, path, attempt + 1, self.max_retries, delay, str(e),
                )
                await asyncio.sleep(delay)
                continue

            status = response.status_code
            if status == 404 and not_found_ok:
                return None

            if status == 429 or status >= 500:
                if is_last:
                    raise TrelloAPIError(
                        f"{method} {path} failed with {status} after {self.max_retries} attempts",
                        status_code=status,
                    )
                retry_after = response.headers.get("Retry-After") if status == 429 else None
                delay = self._backoff_seconds(attempt, retry_after)
                logger.warning(
                    "Trello %d on %s %s (attempt %d/%d), retrying in %.1fs",
                    status, method, path, attempt + 1, self.max_retries, delay,
                )
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                raise TrelloAPIError(
                    f"{method} {path} failed with {status}: {response.text[:200]}",
                    status_code=status,
                )

            if not response.content:
                return {}
            return response.json()

        raise TrelloAPIError(f"{method} {path} failed: retries exhausted")

    # -- Boards --------------------------------------------------------

    async def get_board(self, board_id: str) -> Optional[TrelloBoard]:
        """Board by short alias or canonical id. None if it does not exist."""
        data = await self._request(
            "GET", f"boards/{board_id}",
            params={"fields": "id,name,shortLink,url,closed"},
            not_found_ok=True,
        )
        return TrelloBoard.model_validate(data) if data is not None else None

    async def get_board_cards(
        self, board_id: str, fields: Optional[str] = None
    ) -> list[CardSummary]:
        """Open cards on the board. Defaults to the lightweight summary fields."""
        data = await self._request(
            "GET", f"boards/{board_id}/cards/open",
            params={"fields": fields or CARD_SUMMARY_FIELDS},
        )
        return [CardSummary.model_validate(item) for item in data or []]

    async def get_board_lists(self, board_id: str) -> list[TrelloList]:
        data = await self._request(
            "GET", f"boards/{board_id}/lists",
            params={"filter": "open", "fields": "id,name,closed,idBoard,pos"},
        )
        return [TrelloList.model_validate(item) for item in data or []]

    # -- Cards ---------------------------------------------------------

    async def get_card(self, card_id: str) -> Optional[TrelloCard]:
        """Full card with members, labels, list and checklists. None if deleted."""
        data = await self._request(
            "GET", f"cards/{card_id}", params=CARD_FETCH_PARAMS, not_found_ok=True,
        )
        if data is None:
            return None
        card = TrelloCard.model_validate(data)
        if not card.list_id:
            logger.warning("Trello card %s has no list id", card.id)
        return card

    # -- Members -------------------------------------------------------

    async def get_member_me(self) -> TrelloMemberMe:
        data = await self._request(
            "GET", "members/me", params={"fields": "id,username,fullName"},
        )
        return TrelloMemberMe.model_validate(data)

    # -- Webhooks ------------------------------------------------------

    async def list_token_webhooks(self) -> list[TrelloWebhook]:
        """Every webhook registered under this token, across all boards."""
        data = await self._request("GET", f"tokens/{self.token}/webhooks")
        return [TrelloWebhook.model_validate(item) for item in data or []]

    async def create_webhook(
        self, callback_url: str, id_model: str, description: str = ""
    ) -> TrelloWebhook:
        data = await self._request(
            "POST", "webhooks",
            json={
                "description": description,
                "callbackURL": callback_url,
                "idModel": id_model,
            },
        )
        webhook = TrelloWebhook.model_validate(data)
        logger.info("Trello webhook created: %s model=%s", webhook.id, id_model[:8])
        return webhook

    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete a registration. False if it was already gone."""
        data = await self._request(
            "DELETE", f"webhooks/{webhook_id}", not_found_ok=True,
        )
        if data is None:
            logger.info("Trello webhook %s already deleted", webhook_id)
            return False
        logger.info("Trello webhook deleted: %s", webhook_id)
        return True
