"""Pydantic DTOs shared by the cache, the remote client and the sync engine.

Attributes are snake_case in Python; on the wire (and when validating backend
payloads) the camelCase aliases are used: ``chatId``, ``updatedAt``,
``isSynced`` and so on.  Both spellings are accepted on input.
"""

from typing import Any
from typing import Generic
from typing import List
from typing import Optional
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import field_validator
from pydantic.alias_generators import to_camel

from chatsync.models.enums import MessageRole

T = TypeVar("T")


class WireModel(BaseModel):
    """Base class for camelCase wire payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialise for the backend (camelCase keys, unset optionals dropped)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _as_identifier(value: Any) -> Any:
    # Older backends hand out numeric ids; identifiers are opaque strings here.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class Chat(WireModel):
    chat_id: str
    user_id: str
    title: str
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    deleted_at: Optional[int] = None

    @field_validator("chat_id", "user_id", mode="before")
    @classmethod
    def coerce_identifiers(cls, value: Any) -> Any:
        return _as_identifier(value)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class ChatSummary(Chat):
    """A cached chat plus its message statistics."""

    message_count: int = 0
    last_activity: Optional[int] = None


class Message(WireModel):
    message_id: str
    chat_id: str
    content: str
    role: MessageRole
    created_at: Optional[int] = None
    image_url: Optional[str] = None
    prompt: Optional[str] = None
    is_synced: bool = False

    @field_validator("message_id", "chat_id", mode="before")
    @classmethod
    def coerce_identifiers(cls, value: Any) -> Any:
        return _as_identifier(value)


class Pagination(WireModel):
    total_count: int
    total_pages: int
    current_page: int
    has_next: bool


class PaginatedResult(WireModel, Generic[T]):
    """One page of a listing plus the paging metadata."""

    data: List[T]
    pagination: Pagination


class SyncChatsRequest(WireModel):
    """Body of the backend's server-side chat merge endpoint."""

    user_id: str
    chats: List[Chat]
    last_sync: Optional[int] = None
