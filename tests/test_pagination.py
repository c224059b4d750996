import pytest

from chatsync.exceptions import PaginationError
from chatsync.pagination import build_pagination
from chatsync.pagination import page_offset
from chatsync.pagination import validate_page_args
from chatsync.schemas import Chat
from chatsync.schemas import PaginatedResult


@pytest.mark.parametrize("limit,page", [(0, 0), (-1, 0), (10, -1), (None, 0)])
def test_invalid_page_args_rejected(limit, page):
    with pytest.raises(PaginationError):
        validate_page_args(limit, page)


def test_pagination_error_is_value_error():
    with pytest.raises(ValueError):
        page_offset(0, 0)


def test_offset_is_page_times_limit():
    assert page_offset(25, 0) == 0
    assert page_offset(25, 3) == 75


def test_seven_items_in_pages_of_two():
    pages = [build_pagination(7, 2, page) for page in range(4)]

    assert [p.total_pages for p in pages] == [4, 4, 4, 4]
    assert [p.has_next for p in pages] == [True, True, True, False]
    assert pages[2].current_page == 2
    assert pages[0].total_count == 7


def test_empty_listing_has_no_pages():
    pagination = build_pagination(0, 10, 0)
    assert pagination.total_pages == 0
    assert pagination.has_next is False


def test_page_past_the_end_has_no_next():
    assert build_pagination(3, 2, 5).has_next is False


def test_paginated_result_reads_wire_format():
    payload = {
        "data": [{"chatId": 1, "userId": 42, "title": "hello", "updatedAt": 10}],
        "pagination": {"totalCount": 1, "totalPages": 1, "currentPage": 0, "hasNext": False},
    }

    result = PaginatedResult[Chat].model_validate(payload)

    assert result.data[0].chat_id == "1"
    assert result.data[0].user_id == "42"
    assert result.pagination.total_count == 1
    assert result.to_wire()["pagination"]["hasNext"] is False
