"""Offline-first chat cache with bidirectional sync against a chat backend."""

from chatsync.cache.store import ChatCache
from chatsync.remote.client import RemoteChatClient
from chatsync.services.sync_engine import LoginOptions
from chatsync.services.sync_engine import LogoutOptions
from chatsync.services.sync_engine import SyncEngine
from chatsync.services.sync_engine import SyncState
from chatsync.services.sync_engine import create_sync_engine

__all__ = [
    "ChatCache",
    "LoginOptions",
    "LogoutOptions",
    "RemoteChatClient",
    "SyncEngine",
    "SyncState",
    "create_sync_engine",
]
