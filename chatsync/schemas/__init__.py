from chatsync.schemas.schemas import Chat
from chatsync.schemas.schemas import ChatSummary
from chatsync.schemas.schemas import Message
from chatsync.schemas.schemas import PaginatedResult
from chatsync.schemas.schemas import Pagination
from chatsync.schemas.schemas import SyncChatsRequest

__all__ = [
    "Chat",
    "ChatSummary",
    "Message",
    "PaginatedResult",
    "Pagination",
    "SyncChatsRequest",
]
