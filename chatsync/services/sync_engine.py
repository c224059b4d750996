"""Bidirectional sync between the local :class:`ChatCache` and the chat backend.

Lifecycle
---------

``UNINITIALIZED → INITIALIZING → ACTIVE → STOPPED`` (and ``STOPPED →
INITIALIZING`` on the next login).

* :meth:`SyncEngine.on_login` migrates the cache, pulls everything the user
  owns and starts the periodic ticker.
* Every tick calls :meth:`SyncEngine.run_background_cycle`, which runs one
  :meth:`SyncEngine.run_cycle` and logs (never raises) on failure.
* :meth:`SyncEngine.on_logout` stops the ticker, flushes local changes and
  wipes the cache.

The cursor (``last_sync``) is only advanced after a cycle completed every
phase.  It is set to the instant the cycle (or login) *started*, so records
written on either side while a cycle is running are picked up by the next one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Awaitable
from typing import Dict
from typing import Optional
from typing import Set
from typing import TypeVar

from chatsync.cache.migrations import MigrationStep
from chatsync.cache.store import ChatCache
from chatsync.config import Settings
from chatsync.config import get_settings
from chatsync.constants import DEFAULT_PAGE_SIZE
from chatsync.constants import DEFAULT_SYNC_INTERVAL_SECONDS
from chatsync.constants import NEVER_SYNCED
from chatsync.exceptions import SyncPhaseError
from chatsync.exceptions import SyncStateError
from chatsync.remote.client import RemoteChatClient
from chatsync.schemas import Chat
from chatsync.services.ticker import PeriodicTask
from chatsync.utils.log import log
from chatsync.utils.time import now_ms

_T = TypeVar("_T")


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass
class LoginOptions:
    """Everything :meth:`SyncEngine.on_login` needs besides the engine itself."""

    user_id: str
    sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE
    exclude_deleted: bool = True
    # version → upgrade step from that version; versions start at 1
    migrations: Dict[int, MigrationStep] = field(default_factory=dict)
    credential: Optional[str] = None

    @classmethod
    def from_settings(cls, user_id: str, settings: Optional[Settings] = None, **overrides) -> "LoginOptions":
        settings = settings or get_settings()
        values = {
            "sync_interval_seconds": settings.sync_interval_seconds,
            "page_size": settings.page_size,
            "exclude_deleted": settings.exclude_deleted,
        }
        values.update(overrides)
        return cls(user_id=user_id, **values)


@dataclass
class LogoutOptions:
    user_id: str
    page_size: int = DEFAULT_PAGE_SIZE
    credential: Optional[str] = None

    @classmethod
    def from_settings(cls, user_id: str, settings: Optional[Settings] = None, **overrides) -> "LogoutOptions":
        settings = settings or get_settings()
        values = {"page_size": settings.page_size}
        values.update(overrides)
        return cls(user_id=user_id, **values)


def _snapshot() -> int:
    # A write stamped in the current millisecond may still land after this
    # point; it must stay above the cursor so the next cycle sees it.
    return now_ms() - 1


def should_accept_remote_chat(remote: Chat, cached: Optional[Chat]) -> bool:
    """Decide whether a pulled chat overwrites its cached counterpart.

    * not cached → accept
    * cached copy is a tombstone → reject (local deletion is terminal)
    * remote copy is a tombstone → accept (remote deletion propagates)
    * otherwise → accept only when the remote copy is strictly newer
    """
    if cached is None:
        return True
    if cached.is_deleted:
        return False
    if remote.is_deleted:
        return True
    return (remote.updated_at or 0) > (cached.updated_at or 0)


class SyncEngine:
    """Owns the sync cursor, the lifecycle state and the periodic ticker.

    One engine serves one logged-in user at a time.  Create it with
    :func:`create_sync_engine` (or from an existing cache and client) and
    release it with :meth:`close`.
    """

    def __init__(self, cache: ChatCache, remote: RemoteChatClient):
        self.cache = cache
        self.remote = remote
        self.state = SyncState.UNINITIALIZED
        self.options: Optional[LoginOptions] = None
        self.ticker: Optional[PeriodicTask] = None
        self._last_sync: Optional[int] = None
        self._cycle_lock = asyncio.Lock()
        self._stopping = False

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    def get_last_sync(self) -> int:
        """Return the cursor, or ``-1`` when no sync has completed yet."""
        return NEVER_SYNCED if self._last_sync is None else self._last_sync

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def on_login(self, options: LoginOptions) -> None:
        """Initialise the cache, pull the user's data, push leftovers and start periodic sync.

        Failures put the engine back to ``UNINITIALIZED`` and propagate.
        """
        if self.state not in (SyncState.UNINITIALIZED, SyncState.STOPPED):
            raise SyncStateError(f"Cannot log in while sync engine is {self.state.value}")

        self.state = SyncState.INITIALIZING
        self.options = options
        self._stopping = False
        bound = log.bind(user_id=options.user_id)

        try:
            snapshot = _snapshot()
            since = self.get_last_sync()

            for version, step in sorted(options.migrations.items()):
                self.cache.register_migration(version, step)
            self.cache.initialize()

            chats = await self._phase(
                "initializing chats",
                self.pull_remote_chats(options.user_id, since, exclude_deleted=options.exclude_deleted),
            )
            messages = await self._phase(
                "initializing messages",
                self.pull_remote_messages(options.user_id, since, exclude_deleted=options.exclude_deleted),
            )
            # Whatever an earlier session left in the cache predates the new
            # cursor, so no cycle would ever send it.
            pending = await self._phase(
                "pushing pending chats",
                self.push_cached_chats(options.user_id, since, skip_chat_ids=chats),
            )
            purged = self._purge_delivered(chats | pending, snapshot)
        except Exception as exc:
            self.state = SyncState.UNINITIALIZED
            self.options = None
            bound.error("sync-login-failed", error=str(exc))
            raise

        self._last_sync = snapshot
        self.ticker = PeriodicTask(
            self.run_background_cycle,
            options.sync_interval_seconds,
            name=f"chat-sync:{options.user_id}",
        )
        self.ticker.start()
        self.state = SyncState.ACTIVE
        bound.info(
            "sync-login-complete",
            chats=len(chats),
            messages=messages,
            pushed_chats=len(pending),
            purged_chats=purged,
            cursor=snapshot,
        )

    async def on_logout(self, options: LogoutOptions) -> None:
        """Stop periodic sync, flush local changes and wipe the cache.

        A cycle already in flight is allowed to finish first.  No-op unless
        the engine is active.  On a failed flush the cache is left intact, the
        engine stays active (without a ticker) and the error propagates.
        """
        if self.state is not SyncState.ACTIVE:
            log.info("sync-logout-skipped", user_id=options.user_id, state=self.state.value)
            return

        self._stopping = True
        if self.ticker is not None:
            self.ticker.pause()

        async with self._cycle_lock:
            if self.ticker is not None:
                self.ticker.stop()
                self.ticker = None

            since = self.get_last_sync()
            try:
                chats = await self._phase(
                    "pushing cached chats",
                    self.push_cached_chats(
                        options.user_id,
                        since,
                        page_size=options.page_size,
                        credential=options.credential,
                    ),
                )
                messages = await self._phase(
                    "pushing unsynced messages",
                    self.push_unsynced_messages(
                        options.user_id,
                        page_size=options.page_size,
                        credential=options.credential,
                    ),
                )
                self.cache.clear_message()
                self.cache.clear_chat()
            except Exception as exc:
                self._stopping = False
                log.error("sync-logout-failed", user_id=options.user_id, error=str(exc))
                raise

            self._last_sync = None
            self.options = None
            self.state = SyncState.STOPPED
            self._stopping = False

        log.info("sync-logout-complete", user_id=options.user_id, chats=len(chats), messages=messages)

    async def close(self) -> None:
        """Release the ticker, the HTTP client and the database engine."""
        if self.ticker is not None:
            self.ticker.stop()
            self.ticker = None
        await self.remote.close()
        self.cache.close()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_cycle(self) -> bool:
        """Run one reconciliation cycle.

        Returns ``False`` without doing anything when the engine is not active
        or another cycle is still running.  Phase failures propagate as
        :class:`SyncPhaseError` and leave the cursor untouched.
        """
        if self.state is not SyncState.ACTIVE or self._stopping:
            log.debug("sync-cycle-skipped", reason=self.state.value)
            return False
        if self._cycle_lock.locked():
            log.info("sync-cycle-skipped", reason="busy")
            return False

        async with self._cycle_lock:
            user_id = self.options.user_id
            since = self.get_last_sync()
            snapshot = _snapshot()

            resolved = await self._phase("syncing remote chats", self.pull_remote_chats(user_id, since))
            pushed = await self._phase(
                "pushing cached chats",
                self.push_cached_chats(user_id, since, skip_chat_ids=resolved),
            )
            pulled_messages = await self._phase("syncing remote messages", self.pull_remote_messages(user_id, since))
            pushed_messages = await self._phase("pushing unsynced messages", self.push_unsynced_messages(user_id))

            purged = self._purge_delivered(resolved | pushed, snapshot)

            self._last_sync = snapshot

        log.info(
            "sync-cycle-complete",
            user_id=user_id,
            cursor=snapshot,
            pulled_chats=len(resolved),
            pushed_chats=len(pushed),
            pulled_messages=pulled_messages,
            pushed_messages=pushed_messages,
            purged_chats=purged,
        )
        return True

    async def run_background_cycle(self) -> None:
        """Ticker entry point: run a cycle, log failures, never raise."""
        try:
            await self.run_cycle()
        except Exception as exc:  # noqa: BLE001 – background boundary
            log.error(
                "sync-cycle-failed",
                user_id=self.options.user_id if self.options else None,
                error=str(exc),
                cursor=self.get_last_sync(),
            )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def pull_remote_chats(
        self,
        user_id: str,
        since: int,
        *,
        exclude_deleted: bool = False,
        page_size: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> Set[str]:
        """Page through remote chats updated after *since* and merge them.

        Returns the ids written to the cache ("resolved from remote").
        """
        limit = self._page_size(page_size)
        resolved: Set[str] = set()
        page = 0
        while True:
            result = await self.remote.get_chats_by_user_id(
                user_id,
                updated_after=since,
                limit=limit,
                page=page,
                exclude_deleted=exclude_deleted,
                credential=self._credential(credential),
            )
            cached = {chat.chat_id: chat for chat in self.cache.get_chats_by_chat_ids(c.chat_id for c in result.data)}
            accepted = [chat for chat in result.data if should_accept_remote_chat(chat, cached.get(chat.chat_id))]
            self.cache.upsert_chats(accepted)
            resolved.update(chat.chat_id for chat in accepted)

            if not result.pagination.has_next or not result.data:
                break
            page += 1
        return resolved

    async def push_cached_chats(
        self,
        user_id: str,
        since: int,
        skip_chat_ids: Optional[Set[str]] = None,
        *,
        page_size: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> Set[str]:
        """Send cached chats (tombstones included) updated after *since* to the merge endpoint.

        Returns the ids the backend accepted.
        """
        limit = self._page_size(page_size)
        skip = skip_chat_ids or set()
        pushed: Set[str] = set()
        page = 0
        while True:
            result = self.cache.get_chats_by_user_id(
                user_id,
                updated_after=since,
                limit=limit,
                page=page,
                exclude_deleted=False,
            )
            outgoing = [chat for chat in result.data if chat.chat_id not in skip]
            if outgoing:
                await self.remote.sync_chats(user_id, outgoing, since, credential=self._credential(credential))
                pushed.update(chat.chat_id for chat in outgoing)

            if not result.pagination.has_next:
                break
            page += 1
        return pushed

    async def pull_remote_messages(
        self,
        user_id: str,
        since: int,
        *,
        exclude_deleted: bool = False,
        page_size: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> int:
        """Page through remote messages created after *since* and store them as synced.

        Messages whose chat is not cached are skipped.
        """
        limit = self._page_size(page_size)
        stored = 0
        page = 0
        while True:
            result = await self.remote.get_messages_by_user_id(
                user_id,
                updated_after=since,
                limit=limit,
                page=page,
                exclude_deleted=exclude_deleted,
                credential=self._credential(credential),
            )
            known = {chat.chat_id for chat in self.cache.get_chats_by_chat_ids(m.chat_id for m in result.data)}
            messages = [message for message in result.data if message.chat_id in known]
            if len(messages) < len(result.data):
                log.warning(
                    "sync-orphan-messages-skipped",
                    user_id=user_id,
                    skipped=len(result.data) - len(messages),
                )
            stored += self.cache.upsert_messages(messages, is_synced=True)

            if not result.pagination.has_next or not result.data:
                break
            page += 1
        return stored

    async def push_unsynced_messages(
        self,
        user_id: str,
        *,
        page_size: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> int:
        """Drain every unsynced message of *user_id* to the backend, batch by batch.

        A batch whose push fails is flagged unsynced again before the error
        propagates, so it is retried by the next cycle.
        """
        limit = self._page_size(page_size)
        pushed = 0
        while True:
            batch = self.cache.get_and_mark_unsynced_messages_by_user_id(user_id, limit)
            if not batch:
                break
            try:
                await self.remote.add_messages(batch, credential=self._credential(credential))
            except Exception:
                self.cache.mark_messages_unsynced(message.message_id for message in batch)
                raise
            pushed += len(batch)
        return pushed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _purge_delivered(self, chat_ids: Set[str], snapshot: int) -> int:
        """Drop tombstones among *chat_ids* that the backend already holds.

        A deletion stamped after *snapshot* happened after the push and stays.
        """
        try:
            return self.cache.clear_deleted_chats(deleted_before=snapshot, chat_ids=chat_ids)
        except Exception as exc:
            raise SyncPhaseError("purging deleted chats", exc) from exc

    def _page_size(self, page_size: Optional[int]) -> int:
        if page_size is not None:
            return page_size
        return self.options.page_size if self.options else DEFAULT_PAGE_SIZE

    def _credential(self, credential: Optional[str]) -> Optional[str]:
        if credential is not None:
            return credential
        return self.options.credential if self.options else None

    async def _phase(self, phase: str, awaitable: Awaitable[_T]) -> _T:
        try:
            return await awaitable
        except Exception as exc:
            log.error("sync-phase-failed", phase=phase, error=str(exc))
            raise SyncPhaseError(phase, exc) from exc


def create_sync_engine(
    backend_url: Optional[str] = None,
    database_url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    credential: Optional[str] = None,
    transport=None,
) -> SyncEngine:
    """Build a :class:`SyncEngine` with its own cache and HTTP client.

    Unspecified URLs come from :func:`chatsync.config.get_settings`.
    """
    settings = settings or get_settings()
    cache = ChatCache.from_url(database_url or settings.database_url)
    remote = RemoteChatClient(
        backend_url or settings.backend_url,
        timeout=settings.http_timeout_seconds,
        credential=credential,
        transport=transport,
    )
    return SyncEngine(cache, remote)


__all__ = [
    "LoginOptions",
    "LogoutOptions",
    "SyncEngine",
    "SyncState",
    "create_sync_engine",
    "should_accept_remote_chat",
]
