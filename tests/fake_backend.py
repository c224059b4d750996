"""In-memory stand-in for the chat backend, served through ``httpx.ASGITransport``.

Records are kept exactly as they arrive on the wire (camelCase dicts).  Chats
are listed by ``updatedAt`` then ``chatId`` ascending; messages by
``createdAt`` then ``messageId``.  Paths in ``failures`` answer with the
configured HTTP status instead of being handled.  Callbacks registered with
:meth:`FakeBackend.on_request` run before a request to their path is served.
"""

import math
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

from fastapi import FastAPI
from fastapi import Query
from fastapi import Request
from fastapi import Response
from fastapi.responses import JSONResponse


def _page(items: List[dict], limit: int, page: int) -> dict:
    total = len(items)
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "data": items[page * limit : (page + 1) * limit],
        "pagination": {
            "totalCount": total,
            "totalPages": total_pages,
            "currentPage": page,
            "hasNext": page < total_pages - 1,
        },
    }


class FakeBackend:
    def __init__(self):
        self.chats: Dict[str, dict] = {}
        self.messages: Dict[str, dict] = {}
        self.requests: List[Dict[str, Any]] = []
        self.sync_requests: List[dict] = []
        self.failures: Dict[str, int] = {}
        self.hooks: Dict[str, List[Callable[[], None]]] = {}
        self.app = self._build_app()

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def seed_chat(
        self,
        chat_id: str,
        user_id: str,
        title: str = "",
        updated_at: int = 0,
        deleted_at: Optional[int] = None,
    ) -> dict:
        chat = {
            "chatId": chat_id,
            "userId": user_id,
            "title": title or f"chat {chat_id}",
            "createdAt": updated_at,
            "updatedAt": updated_at,
        }
        if deleted_at is not None:
            chat["deletedAt"] = deleted_at
        self.chats[chat_id] = chat
        return chat

    def seed_message(self, message_id: str, chat_id: str, content: str = "hi", created_at: int = 0) -> dict:
        message = {
            "messageId": message_id,
            "chatId": chat_id,
            "content": content,
            "role": "user",
            "createdAt": created_at,
        }
        self.messages[message_id] = message
        return message

    def fail(self, path: str, status_code: int = 503) -> None:
        self.failures[path] = status_code

    def on_request(self, path: str, callback: Callable[[], None]) -> None:
        self.hooks.setdefault(path, []).append(callback)

    def requests_to(self, path: str, method: Optional[str] = None) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"] == path and (method is None or r["method"] == method)]

    # ------------------------------------------------------------------
    # ASGI app
    # ------------------------------------------------------------------

    def _store_chat(self, chat: dict) -> None:
        # Last write wins on updatedAt; deletions always stick.
        current = self.chats.get(chat["chatId"])
        if (
            current is None
            or chat.get("deletedAt") is not None
            or chat.get("updatedAt", 0) >= current.get("updatedAt", 0)
        ):
            self.chats[chat["chatId"]] = dict(chat)

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        backend = self

        @app.middleware("http")
        async def record_and_fail(request: Request, call_next):
            backend.requests.append(
                {
                    "method": request.method,
                    "path": request.url.path,
                    "params": dict(request.query_params),
                    "authorization": request.headers.get("authorization"),
                }
            )
            for callback in backend.hooks.get(request.url.path, []):
                callback()
            status = backend.failures.get(request.url.path)
            if status is not None:
                return JSONResponse({"error": "injected failure"}, status_code=status)
            return await call_next(request)

        @app.get("/chats/user/{user_id}")
        async def list_chats(
            user_id: str,
            limit: int = 200,
            page: int = 0,
            updated_after: int = Query(-1, alias="updatedAfter"),
            exclude_deleted: bool = Query(True, alias="excludeDeleted"),
        ):
            chats = [
                c
                for c in backend.chats.values()
                if c["userId"] == user_id
                and c.get("updatedAt", 0) > updated_after
                and not (exclude_deleted and c.get("deletedAt") is not None)
            ]
            chats.sort(key=lambda c: (c.get("updatedAt", 0), c["chatId"]))
            return _page(chats, limit, page)

        @app.post("/chats")
        async def add_chat(payload: dict):
            backend._store_chat(payload)
            return payload

        @app.post("/chats/bulk")
        async def add_chats(payload: dict):
            for chat in payload.get("chats", []):
                backend._store_chat(chat)
            return {"count": len(payload.get("chats", []))}

        @app.post("/chats/sync")
        async def sync_chats(payload: dict):
            backend.sync_requests.append(payload)
            for chat in payload.get("chats", []):
                backend._store_chat(chat)
            return {"count": len(payload.get("chats", []))}

        @app.delete("/chats/{chat_id}")
        async def delete_chat(chat_id: str):
            backend.chats.pop(chat_id, None)
            return Response(status_code=204)

        @app.get("/messages/user/{user_id}")
        async def list_messages(
            user_id: str,
            limit: int = 200,
            page: int = 0,
            updated_after: int = Query(-1, alias="updatedAfter"),
            exclude_deleted: bool = Query(True, alias="excludeDeleted"),
        ):
            owned = {
                c["chatId"]
                for c in backend.chats.values()
                if c["userId"] == user_id and not (exclude_deleted and c.get("deletedAt") is not None)
            }
            messages = [
                m for m in backend.messages.values() if m["chatId"] in owned and m.get("createdAt", 0) > updated_after
            ]
            messages.sort(key=lambda m: (m.get("createdAt", 0), m["messageId"]))
            return _page(messages, limit, page)

        @app.post("/messages")
        async def add_message(payload: dict):
            backend.messages[payload["messageId"]] = payload
            return payload

        @app.post("/messages/bulk")
        async def add_messages(payload: dict):
            for message in payload.get("messages", []):
                backend.messages[message["messageId"]] = message
            return {"count": len(payload.get("messages", []))}

        return app
