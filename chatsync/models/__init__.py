from chatsync.models.enums import MessageRole
from chatsync.models.models import Chat
from chatsync.models.models import Message

__all__ = ["Chat", "Message", "MessageRole"]
