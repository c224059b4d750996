"""Clock helpers – provide a single epoch-millisecond *now()* function.

Chats and messages carry integer epoch-millisecond timestamps on both sides of
the sync boundary.  Import :pyfunc:`now_ms` everywhere instead of calling the
stdlib helpers directly so tests can patch one place.
"""

import time


def now_ms() -> int:  # noqa: D401 – simple utility
    """Return the current wall-clock time in epoch milliseconds."""

    return time.time_ns() // 1_000_000


__all__ = ["now_ms"]
