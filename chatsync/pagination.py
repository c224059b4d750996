"""Page/limit contract shared by the cache listings and the backend client.

Pages are 0-based; ``offset = page * limit``.  A listing of ``total_count``
rows has ``ceil(total_count / limit)`` pages and ``has_next`` is true for every
page but the last.
"""

import math

from chatsync.exceptions import PaginationError
from chatsync.schemas.schemas import Pagination


def validate_page_args(limit: int, page: int) -> None:
    """Reject invalid paging arguments before any I/O happens."""

    if limit is None or limit <= 0:
        raise PaginationError(f"limit must be a positive integer, got {limit!r}")
    if page is None or page < 0:
        raise PaginationError(f"page must be a non-negative integer, got {page!r}")


def page_offset(limit: int, page: int) -> int:
    validate_page_args(limit, page)
    return page * limit


def build_pagination(total_count: int, limit: int, page: int) -> Pagination:
    """Return the :class:`Pagination` block for *page* of a *total_count* listing."""

    validate_page_args(limit, page)
    total_pages = math.ceil(total_count / limit) if total_count > 0 else 0
    return Pagination(
        total_count=total_count,
        total_pages=total_pages,
        current_page=page,
        has_next=page < total_pages - 1,
    )


__all__ = ["build_pagination", "page_offset", "validate_page_args"]
