"""Shared defaults for the cache and the sync engine."""

# Cursor value used before the first successful reconciliation.  Every stored
# timestamp is a non-negative epoch-millisecond value, so ``updated_after=-1``
# matches all rows.
NEVER_SYNCED = -1

DEFAULT_SYNC_INTERVAL_SECONDS = 60
DEFAULT_PAGE_SIZE = 200

# Rows per multi-VALUES upsert statement.  Keeps every statement well below
# SQLite's bound-parameter limit.
UPSERT_BATCH_SIZE = 100

CHATS_TABLE = "chats"
MESSAGES_TABLE = "messages"
