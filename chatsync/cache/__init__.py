from chatsync.cache.migrations import SchemaMigrator
from chatsync.cache.store import ChatCache

__all__ = ["ChatCache", "SchemaMigrator"]
