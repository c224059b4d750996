"""ORM models for the local chat cache.

All timestamps are integer epoch milliseconds (see :mod:`chatsync.utils.time`)
so that they compare directly with the values the backend sends.
"""

from sqlalchemy import BigInteger
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Index
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.orm import relationship

from chatsync.constants import CHATS_TABLE
from chatsync.constants import MESSAGES_TABLE
from chatsync.database import Base
from chatsync.utils.time import now_ms


class Chat(Base):
    """A conversation owned by one user.

    ``deleted_at`` is the soft-delete marker: a tombstoned chat is hidden from
    default listings but stays on disk until ``clear_deleted_chats`` purges it.
    """

    __tablename__ = CHATS_TABLE

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(Text, nullable=False)

    # Timestamps -------------------------------------------------------------
    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)
    deleted_at = Column(BigInteger, nullable=True, default=None)

    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    """A single message inside a chat.

    ``is_synced`` is ``False`` for messages written locally and not yet handed
    to the backend.
    """

    __tablename__ = MESSAGES_TABLE
    __table_args__ = (
        Index("idx_messages_chat_id", "chat_id"),
        Index("idx_messages_role", "role"),
    )

    id = Column(String, primary_key=True)
    chat_id = Column(String, ForeignKey(f"{CHATS_TABLE}.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    role = Column(String, nullable=False)  # see :class:`chatsync.models.enums.MessageRole`
    prompt = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False, default=now_ms)
    is_synced = Column(Boolean, nullable=False, default=False)

    chat = relationship("Chat", back_populates="messages")
