"""Retry wrapper for calls to the chat backend.

Attempts are spaced by a doubling delay with some random spread.  Under
``TESTING`` the policy shrinks to two quick attempts.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Awaitable
from typing import Callable
from typing import ParamSpec
from typing import TypeVar

from chatsync.config import get_settings
from chatsync.utils.log import log

_T = TypeVar("_T")
_P = ParamSpec("_P")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def async_retry(
    *,
    max_attempts: int = 4,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    jitter: float = 0.25,
    retriable: Callable[[Exception], bool] | None = None,
    provider: str | None = None,
) -> Callable[[Callable[_P, Awaitable[_T]]], Callable[_P, Awaitable[_T]]]:
    """Re-run the decorated coroutine while *retriable* accepts its error.

    *max_attempts* counts the first call.  The error of the last attempt
    propagates unchanged.
    """

    if get_settings().testing:
        max_attempts = min(max_attempts, 2)
        base_delay = min(base_delay, 0.01)
        max_delay = min(max_delay, 0.05)

    def decorator(fn: Callable[_P, Awaitable[_T]]) -> Callable[_P, Awaitable[_T]]:
        label = provider or fn.__module__

        @functools.wraps(fn)
        async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _T:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    if attempt == max_attempts or (retriable is not None and not retriable(exc)):
                        log.warning("backend-call-failed", provider=label, call=fn.__name__, attempts=attempt, error=str(exc))
                        raise
                    pause = min(base_delay * 2 ** (attempt - 1), max_delay)
                    pause *= 1 + random.uniform(-jitter, jitter)
                    log.debug("backend-call-retry", provider=label, call=fn.__name__, attempt=attempt, sleep=pause)
                    await asyncio.sleep(pause)
            raise AssertionError("unreachable")

        return wrapper

    return decorator


def is_retryable_http_exc(exc: Exception) -> bool:
    """Transport errors (no ``status_code``) and transient statuses are worth retrying."""

    status = getattr(exc, "status_code", None)
    return status is None or status in TRANSIENT_STATUS_CODES


__all__ = ["async_retry", "is_retryable_http_exc"]
