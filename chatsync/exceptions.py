"""Exception types raised by the cache, the remote client and the sync engine.

Storage failures are not wrapped: SQLAlchemy's own exceptions propagate from
the cache unchanged so callers can tell integrity violations from I/O errors.
"""

from typing import Optional


class ChatSyncError(Exception):
    """Base exception for all chatsync errors."""

    pass


class CacheNotInitializedError(ChatSyncError):
    """Raised when the local cache is used before ``initialize()``."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Chat cache not initialized; call initialize() before {operation}()")


class PaginationError(ChatSyncError, ValueError):
    """Raised for invalid page/limit arguments, before any I/O happens."""

    pass


class RemoteStoreError(ChatSyncError):
    """Raised when a call to the chat backend fails.

    The message always names the failed *operation*; ``status_code`` is set
    when the backend answered with an HTTP error and ``None`` for transport
    failures (timeouts, refused connections, ...).
    """

    def __init__(self, operation: str, detail: str, status_code: Optional[int] = None):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        message = f"Remote {operation} failed"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        message += f": {detail}"
        super().__init__(message)


class SyncPhaseError(ChatSyncError):
    """Raised by the sync engine with the failed phase prepended to the cause."""

    def __init__(self, phase: str, cause: Exception):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Error {phase}: {cause}")


class SyncStateError(ChatSyncError):
    """Raised when a lifecycle call is not valid in the engine's current state."""

    pass
