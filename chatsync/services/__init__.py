from chatsync.services.sync_engine import LoginOptions
from chatsync.services.sync_engine import LogoutOptions
from chatsync.services.sync_engine import SyncEngine
from chatsync.services.sync_engine import SyncState
from chatsync.services.sync_engine import create_sync_engine
from chatsync.services.ticker import PeriodicTask

__all__ = [
    "LoginOptions",
    "LogoutOptions",
    "PeriodicTask",
    "SyncEngine",
    "SyncState",
    "create_sync_engine",
]
