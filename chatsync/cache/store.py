"""Local chat cache backed by SQLite.

:class:`ChatCache` owns the physical schema (and its migration counter) and
exposes CRUD/upsert operations over chats and messages.  Every operation runs
inside :func:`chatsync.database.db_session`, so a failure rolls the whole
operation back and the original SQLAlchemy exception reaches the caller.

Operations that touch two rows (adding a message bumps its chat's
``updated_at``; renaming a chat bumps it too) share one transaction, which
means no caller can ever observe a message whose parent chat still carries the
old timestamp.
"""

import functools
import logging
import uuid
from typing import Dict
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Optional
from typing import Sequence
from typing import TypeVar

from sqlalchemy import Connection
from sqlalchemy import Engine
from sqlalchemy import false
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from chatsync.cache.migrations import MigrationStep
from chatsync.cache.migrations import SchemaMigrator
from chatsync.constants import CHATS_TABLE
from chatsync.constants import DEFAULT_PAGE_SIZE
from chatsync.constants import NEVER_SYNCED
from chatsync.constants import UPSERT_BATCH_SIZE
from chatsync.database import Base
from chatsync.database import db_session
from chatsync.database import make_engine
from chatsync.database import make_sessionmaker
from chatsync.exceptions import CacheNotInitializedError
from chatsync.exceptions import PaginationError
from chatsync.models.enums import MessageRole
from chatsync.models.models import Chat as ChatRow
from chatsync.models.models import Message as MessageRow
from chatsync.pagination import build_pagination
from chatsync.pagination import page_offset
from chatsync.schemas import Chat
from chatsync.schemas import ChatSummary
from chatsync.schemas import Message
from chatsync.schemas import PaginatedResult
from chatsync.utils.time import now_ms

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Tables whose rows carry an ``updated_at`` column.
_TIMESTAMPED_TABLES = {CHATS_TABLE: ChatRow}

# SQLite caps the number of bound parameters per statement.
_MAX_IN_CLAUSE = 500


def create_base_schema(conn: Connection) -> None:
    """Schema version 0 → 1: ``chats``, ``messages`` and their indexes."""

    Base.metadata.create_all(bind=conn, tables=[ChatRow.__table__, MessageRow.__table__])


def _batched(items: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _chat_dto(row: ChatRow) -> Chat:
    return Chat(
        chat_id=row.id,
        user_id=row.user_id,
        title=row.title,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _message_dto(row: MessageRow, *, is_synced: Optional[bool] = None) -> Message:
    return Message(
        message_id=row.id,
        chat_id=row.chat_id,
        content=row.content,
        role=row.role,
        created_at=row.created_at,
        image_url=row.image_url,
        prompt=row.prompt,
        is_synced=row.is_synced if is_synced is None else is_synced,
    )


def _last_activity():
    """Correlated ``MAX(messages.created_at)`` for the outer chat row."""

    return (
        select(func.max(MessageRow.created_at))
        .where(MessageRow.chat_id == ChatRow.id)
        .correlate(ChatRow)
        .scalar_subquery()
    )


def _message_count():
    return (
        select(func.count(MessageRow.id))
        .where(MessageRow.chat_id == ChatRow.id)
        .correlate(ChatRow)
        .scalar_subquery()
    )


def _user_chat_filters(user_id: str, updated_after: Optional[int], exclude_deleted: bool) -> list:
    clauses = [
        ChatRow.user_id == user_id,
        ChatRow.updated_at > (NEVER_SYNCED if updated_after is None else updated_after),
    ]
    if exclude_deleted:
        clauses.append(ChatRow.deleted_at.is_(None))
    return clauses


def _requires_initialized(fn):
    """Fail fast when the cache is used before :meth:`ChatCache.initialize`."""

    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        if not self._initialized:
            raise CacheNotInitializedError(fn.__name__)
        return fn(self, *args, **kwargs)

    return wrapper


class ChatCache:
    """CRUD, upsert and sync-flag bookkeeping over the local chat tables."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = make_sessionmaker(engine)
        self.migrator = SchemaMigrator(engine)
        self.migrator.register(0, create_base_schema)
        self.schema_version: Optional[int] = None
        self._initialized = False

    @classmethod
    def from_url(cls, db_url: str) -> "ChatCache":
        return cls(make_engine(db_url))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def register_migration(self, version: int, step: MigrationStep) -> None:
        """Register an upgrade step from *version* (``>= 1``) to the next version.

        Version 0 is the base schema created by the cache itself.
        """
        if version < 1:
            raise ValueError(f"Migration versions start at 1 (0 is the base schema), got {version}")
        self.migrator.register(version, step)

    def initialize(self) -> int:
        """Run pending migrations and open the cache for use.

        Safe to call repeatedly; returns the schema version.
        """
        self.schema_version = self.migrator.initialize()
        self._initialized = True
        logger.info("Chat cache initialized at schema version %s", self.schema_version)
        return self.schema_version

    def close(self) -> None:
        self._initialized = False
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    @_requires_initialized
    def add_chat(
        self,
        chat_id: str,
        user_id: str,
        title: str,
        updated_at: Optional[int] = None,
        deleted_at: Optional[int] = None,
    ) -> Chat:
        """Insert a single chat.  A duplicate *chat_id* raises ``IntegrityError``."""

        now = now_ms()
        row = ChatRow(
            id=chat_id,
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now if updated_at is None else updated_at,
            deleted_at=deleted_at,
        )
        with db_session(self.session_factory) as db:
            db.add(row)
            db.flush()
            return _chat_dto(row)

    @_requires_initialized
    def upsert_chats(self, chats: Sequence[Chat]) -> int:
        """Insert or update *chats* keyed by ``chat_id``.

        On conflict ``user_id``, ``title``, ``updated_at`` and ``deleted_at``
        are overwritten; ``created_at`` keeps the value of the first insert.
        Returns the number of distinct chats written.
        """
        if not chats:
            return 0

        now = now_ms()
        # Last occurrence wins when the same chat appears twice in one call.
        rows: Dict[str, dict] = {}
        for chat in chats:
            rows[chat.chat_id] = {
                "id": chat.chat_id,
                "user_id": chat.user_id,
                "title": chat.title,
                "created_at": now if chat.created_at is None else chat.created_at,
                "updated_at": now if chat.updated_at is None else chat.updated_at,
                "deleted_at": chat.deleted_at,
            }
        values = list(rows.values())

        with db_session(self.session_factory) as db:
            for batch in _batched(values, UPSERT_BATCH_SIZE):
                stmt = sqlite_insert(ChatRow).values(list(batch))
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ChatRow.id],
                    set_={
                        "user_id": stmt.excluded.user_id,
                        "title": stmt.excluded.title,
                        "updated_at": stmt.excluded.updated_at,
                        "deleted_at": stmt.excluded.deleted_at,
                    },
                )
                db.execute(stmt)
        return len(values)

    @_requires_initialized
    def get_chats_by_user_id(
        self,
        user_id: str,
        updated_after: Optional[int] = NEVER_SYNCED,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 0,
        exclude_deleted: bool = True,
    ) -> PaginatedResult[Chat]:
        """Return one page of *user_id*'s chats updated strictly after *updated_after*.

        Chats are ordered by their most recent message (chats without
        messages last), then by chat id, both descending.
        """
        offset = page_offset(limit, page)
        filters = _user_chat_filters(user_id, updated_after, exclude_deleted)

        with db_session(self.session_factory) as db:
            total = db.query(func.count(ChatRow.id)).filter(*filters).scalar() or 0
            rows = (
                db.query(ChatRow)
                .filter(*filters)
                .order_by(_last_activity().desc(), ChatRow.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            data = [_chat_dto(row) for row in rows]

        return PaginatedResult[Chat](data=data, pagination=build_pagination(total, limit, page))

    @_requires_initialized
    def count_chats_by_user_id(
        self,
        user_id: str,
        updated_after: Optional[int] = NEVER_SYNCED,
        exclude_deleted: bool = True,
    ) -> int:
        filters = _user_chat_filters(user_id, updated_after, exclude_deleted)
        with db_session(self.session_factory) as db:
            return db.query(func.count(ChatRow.id)).filter(*filters).scalar() or 0

    @_requires_initialized
    def get_chats_by_chat_ids(self, chat_ids: Iterable[str]) -> List[Chat]:
        ids = list(dict.fromkeys(chat_ids))
        if not ids:
            return []

        chats: List[Chat] = []
        with db_session(self.session_factory) as db:
            for batch in _batched(ids, _MAX_IN_CLAUSE):
                rows = db.query(ChatRow).filter(ChatRow.id.in_(batch)).all()
                chats.extend(_chat_dto(row) for row in rows)
        return chats

    @_requires_initialized
    def get_chats(self, user_id: Optional[str] = None, exclude_deleted: bool = False) -> List[ChatSummary]:
        """Return every cached chat with its message count and last activity."""

        last_activity = _last_activity().label("last_activity")
        message_count = _message_count().label("message_count")

        with db_session(self.session_factory) as db:
            query = db.query(ChatRow, message_count, last_activity)
            if user_id is not None:
                query = query.filter(ChatRow.user_id == user_id)
            if exclude_deleted:
                query = query.filter(ChatRow.deleted_at.is_(None))
            rows = query.order_by(last_activity.desc(), ChatRow.id.desc()).all()

            return [
                ChatSummary(
                    **_chat_dto(row).model_dump(),
                    message_count=count or 0,
                    last_activity=activity,
                )
                for row, count, activity in rows
            ]

    @_requires_initialized
    def delete_chat(self, chat_id: str) -> int:
        """Hard-delete a chat; its messages go with it (``ON DELETE CASCADE``)."""

        with db_session(self.session_factory) as db:
            return db.query(ChatRow).filter(ChatRow.id == chat_id).delete(synchronize_session=False)

    @_requires_initialized
    def mark_chat_as_deleted(self, chat_id: str) -> int:
        """Soft-delete a chat by stamping ``deleted_at`` (and ``updated_at``) with now."""

        now = now_ms()
        with db_session(self.session_factory) as db:
            return (
                db.query(ChatRow)
                .filter(ChatRow.id == chat_id)
                .update({ChatRow.deleted_at: now, ChatRow.updated_at: now}, synchronize_session=False)
            )

    @_requires_initialized
    def rename_chat(self, chat_id: str, title: str) -> int:
        with db_session(self.session_factory) as db:
            count = (
                db.query(ChatRow)
                .filter(ChatRow.id == chat_id)
                .update({ChatRow.title: title}, synchronize_session=False)
            )
            self._touch(db, CHATS_TABLE, chat_id)
            return count

    @_requires_initialized
    def update_table_timestamp(self, table: str, row_id: str) -> int:
        """Set ``updated_at`` of one row of *table* to now."""

        with db_session(self.session_factory) as db:
            return self._touch(db, table, row_id)

    @_requires_initialized
    def clear_deleted_chats(
        self,
        deleted_before: Optional[int] = None,
        chat_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """Physically remove tombstoned chats (and, by cascade, their messages).

        With *deleted_before* only tombstones whose ``updated_at`` is at or
        before that instant are purged.  With *chat_ids* only those chats are
        candidates; live chats among them are left alone.
        """
        ids = None if chat_ids is None else list(dict.fromkeys(chat_ids))
        if ids is not None and not ids:
            return 0

        with db_session(self.session_factory) as db:
            query = db.query(ChatRow).filter(ChatRow.deleted_at.isnot(None))
            if deleted_before is not None:
                query = query.filter(ChatRow.updated_at <= deleted_before)
            if ids is None:
                purged = query.delete(synchronize_session=False)
            else:
                purged = 0
                for batch in _batched(ids, _MAX_IN_CLAUSE):
                    purged += query.filter(ChatRow.id.in_(batch)).delete(synchronize_session=False)
        if purged:
            logger.info("Purged %s deleted chat(s) from cache", purged)
        return purged

    @_requires_initialized
    def clear_chat(self) -> int:
        """Delete every chat (messages cascade).  Used on logout."""

        with db_session(self.session_factory) as db:
            return db.query(ChatRow).delete(synchronize_session=False)

    @_requires_initialized
    def clear_message(self) -> int:
        """Delete every message.  Used on logout."""

        with db_session(self.session_factory) as db:
            return db.query(MessageRow).delete(synchronize_session=False)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @_requires_initialized
    def get_messages(self, chat_id: str) -> List[Message]:
        with db_session(self.session_factory) as db:
            rows = (
                db.query(MessageRow)
                .filter(MessageRow.chat_id == chat_id)
                .order_by(MessageRow.created_at.asc(), MessageRow.id.asc())
                .all()
            )
            return [_message_dto(row) for row in rows]

    @_requires_initialized
    def add_message(
        self,
        message_id: Optional[str],
        chat_id: str,
        content: str,
        role: MessageRole | str,
        image_url: Optional[str] = None,
        prompt: Optional[str] = None,
        is_synced: bool = False,
    ) -> Message:
        """Insert a message and bump its chat's ``updated_at`` atomically.

        A missing *message_id* gets a random one.  A *chat_id* that does not
        exist raises ``IntegrityError`` and nothing is written.
        """
        now = now_ms()
        row = MessageRow(
            id=message_id or uuid.uuid4().hex,
            chat_id=chat_id,
            content=content,
            role=MessageRole(role).value,
            image_url=image_url,
            prompt=prompt,
            created_at=now,
            is_synced=is_synced,
        )
        with db_session(self.session_factory) as db:
            db.add(row)
            db.flush()
            self._touch(db, CHATS_TABLE, chat_id, now=now)
            return _message_dto(row)

    @_requires_initialized
    def upsert_messages(self, messages: Sequence[Message], is_synced: Optional[bool] = None) -> int:
        """Insert or update *messages* keyed by ``message_id``.

        On conflict ``content``, ``role``, ``image_url``, ``prompt`` and
        ``is_synced`` are overwritten; ``created_at`` and ``chat_id`` never
        change.  *is_synced*, when given, overrides every message's own flag.
        """
        if not messages:
            return 0

        now = now_ms()
        rows: Dict[str, dict] = {}
        for message in messages:
            rows[message.message_id] = {
                "id": message.message_id,
                "chat_id": message.chat_id,
                "content": message.content,
                "role": MessageRole(message.role).value,
                "image_url": message.image_url,
                "prompt": message.prompt,
                "created_at": now if message.created_at is None else message.created_at,
                "is_synced": message.is_synced if is_synced is None else is_synced,
            }
        values = list(rows.values())

        with db_session(self.session_factory) as db:
            for batch in _batched(values, UPSERT_BATCH_SIZE):
                stmt = sqlite_insert(MessageRow).values(list(batch))
                stmt = stmt.on_conflict_do_update(
                    index_elements=[MessageRow.id],
                    set_={
                        "content": stmt.excluded.content,
                        "role": stmt.excluded.role,
                        "image_url": stmt.excluded.image_url,
                        "prompt": stmt.excluded.prompt,
                        "is_synced": stmt.excluded.is_synced,
                    },
                )
                db.execute(stmt)
        return len(values)

    @_requires_initialized
    def get_and_mark_unsynced_messages_by_user_id(self, user_id: str, limit: int) -> List[Message]:
        """Hand off up to *limit* unsynced messages of *user_id*, newest first.

        Selection and marking happen in one transaction, so two consecutive
        calls never return the same message.
        """
        if limit is None or limit <= 0:
            raise PaginationError(f"limit must be a positive integer, got {limit!r}")

        with db_session(self.session_factory) as db:
            rows = (
                db.query(MessageRow)
                .join(ChatRow, MessageRow.chat_id == ChatRow.id)
                .filter(ChatRow.user_id == user_id, MessageRow.is_synced == false())
                .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
                .limit(limit)
                .all()
            )
            if not rows:
                return []

            db.execute(
                update(MessageRow)
                .where(MessageRow.id.in_([row.id for row in rows]))
                .values(is_synced=True)
                .execution_options(synchronize_session=False)
            )
            return [_message_dto(row, is_synced=True) for row in rows]

    @_requires_initialized
    def mark_messages_unsynced(self, message_ids: Iterable[str]) -> int:
        """Flag messages for another push attempt."""

        ids = list(message_ids)
        if not ids:
            return 0
        updated = 0
        with db_session(self.session_factory) as db:
            for batch in _batched(ids, _MAX_IN_CLAUSE):
                result = db.execute(
                    update(MessageRow)
                    .where(MessageRow.id.in_(batch))
                    .values(is_synced=False)
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _touch(db: Session, table: str, row_id: str, *, now: Optional[int] = None) -> int:
        model = _TIMESTAMPED_TABLES.get(table)
        if model is None:
            raise ValueError(f"Table {table!r} has no updated_at column")
        return (
            db.query(model)
            .filter(model.id == row_id)
            .update({model.updated_at: now_ms() if now is None else now}, synchronize_session=False)
        )


__all__ = ["ChatCache", "create_base_schema"]
