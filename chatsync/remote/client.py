"""Async HTTP client for the chat backend.

The client mirrors the listing/upsert surface of :class:`chatsync.cache.ChatCache`
so the sync engine can treat the backend as a remote copy of the cache:

==========================  ===================================
method                      endpoint
==========================  ===================================
``get_chats_by_user_id``    ``GET    /chats/user/{userId}``
``add_chat``                ``POST   /chats``
``add_chats``               ``POST   /chats/bulk``
``sync_chats``              ``POST   /chats/sync``
``delete_chat``             ``DELETE /chats/{chatId}``
``get_messages_by_user_id`` ``GET    /messages/user/{userId}``
``add_message``             ``POST   /messages``
``add_messages``            ``POST   /messages/bulk``
==========================  ===================================

Every failure is raised as :class:`chatsync.exceptions.RemoteStoreError`
naming the operation.  Transport errors and transient HTTP statuses are
retried with exponential back-off first.
"""

import logging
from typing import Any
from typing import Dict
from typing import Optional
from typing import Sequence

import httpx

from chatsync.constants import DEFAULT_PAGE_SIZE
from chatsync.constants import NEVER_SYNCED
from chatsync.exceptions import RemoteStoreError
from chatsync.pagination import validate_page_args
from chatsync.schemas import Chat
from chatsync.schemas import Message
from chatsync.schemas import PaginatedResult
from chatsync.schemas import SyncChatsRequest
from chatsync.utils.retry import async_retry
from chatsync.utils.retry import is_retryable_http_exc

logger = logging.getLogger(__name__)


class RemoteChatClient:
    """Thin wrapper around :class:`httpx.AsyncClient` speaking the backend's REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        credential: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credential = credential
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "RemoteChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def get_chats_by_user_id(
        self,
        user_id: str,
        *,
        updated_after: Optional[int] = NEVER_SYNCED,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 0,
        exclude_deleted: bool = True,
        credential: Optional[str] = None,
    ) -> PaginatedResult[Chat]:
        validate_page_args(limit, page)
        payload = await self._request(
            "get chats by user id",
            "GET",
            f"/chats/user/{user_id}",
            params=_listing_params(updated_after, limit, page, exclude_deleted),
            credential=credential,
        )
        return _parse_page("get chats by user id", PaginatedResult[Chat], payload)

    async def add_chat(self, chat: Chat, *, credential: Optional[str] = None) -> None:
        await self._request("add chat", "POST", "/chats", json=chat.to_wire(), credential=credential)

    async def add_chats(self, chats: Sequence[Chat], *, credential: Optional[str] = None) -> None:
        if not chats:
            return
        await self._request(
            "add chats",
            "POST",
            "/chats/bulk",
            json={"chats": [chat.to_wire() for chat in chats]},
            credential=credential,
        )

    async def sync_chats(
        self,
        user_id: str,
        chats: Sequence[Chat],
        last_sync: Optional[int] = None,
        *,
        credential: Optional[str] = None,
    ) -> None:
        """Hand *chats* to the backend's server-side merge endpoint."""

        body = SyncChatsRequest(user_id=user_id, chats=list(chats), last_sync=last_sync)
        await self._request("sync chats", "POST", "/chats/sync", json=body.to_wire(), credential=credential)

    async def delete_chat(self, chat_id: str, *, credential: Optional[str] = None) -> None:
        await self._request("delete chat", "DELETE", f"/chats/{chat_id}", credential=credential)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_messages_by_user_id(
        self,
        user_id: str,
        *,
        updated_after: Optional[int] = NEVER_SYNCED,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 0,
        exclude_deleted: bool = True,
        credential: Optional[str] = None,
    ) -> PaginatedResult[Message]:
        validate_page_args(limit, page)
        payload = await self._request(
            "get messages by user id",
            "GET",
            f"/messages/user/{user_id}",
            params=_listing_params(updated_after, limit, page, exclude_deleted),
            credential=credential,
        )
        return _parse_page("get messages by user id", PaginatedResult[Message], payload)

    async def add_message(self, message: Message, *, credential: Optional[str] = None) -> None:
        await self._request("add message", "POST", "/messages", json=message.to_wire(), credential=credential)

    async def add_messages(self, messages: Sequence[Message], *, credential: Optional[str] = None) -> None:
        if not messages:
            return
        await self._request(
            "add messages",
            "POST",
            "/messages/bulk",
            json={"messages": [message.to_wire() for message in messages]},
            credential=credential,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, credential: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = credential or self.credential
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @async_retry(provider="chat-backend", retriable=is_retryable_http_exc)
    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        credential: Optional[str] = None,
    ) -> Any:
        try:
            response = await self.client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(credential),
            )
        except httpx.HTTPError as e:
            logger.error(f"Remote {operation} failed: {e}")
            raise RemoteStoreError(operation, str(e) or type(e).__name__) from e

        if response.is_error:
            detail = response.text or response.reason_phrase
            logger.error(f"Remote {operation} failed with HTTP {response.status_code}: {detail}")
            raise RemoteStoreError(operation, detail, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(operation, f"invalid JSON response: {e}", status_code=response.status_code) from e


def _listing_params(updated_after: Optional[int], limit: int, page: int, exclude_deleted: bool) -> Dict[str, Any]:
    return {
        "limit": limit,
        "page": page,
        "updatedAfter": NEVER_SYNCED if updated_after is None else updated_after,
        "excludeDeleted": "true" if exclude_deleted else "false",
    }


def _parse_page(operation: str, model, payload: Any):
    if payload is None:
        raise RemoteStoreError(operation, "empty response body")
    try:
        return model.model_validate(payload)
    except ValueError as e:
        logger.error(f"Remote {operation} returned an unexpected payload: {e}")
        raise RemoteStoreError(operation, f"unexpected payload: {e}") from e


__all__ = ["RemoteChatClient"]
