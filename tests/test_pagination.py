"""Tests for :mod:`decision_journal.api.pagination`."""

from __future__ import annotations

import math

import pytest

from decision_journal.api.pagination import paginate, paginate_query
from decision_journal.errors import InvalidPagination


@pytest.mark.parametrize('total, limit', [(0, 5), (1, 1), (7, 3), (20, 20), (101, 100)])
def test_pages_reassemble_the_sequence(total: int, limit: int) -> None:
    items = list(range(total))
    total_pages = math.ceil(total / limit)

    collected = []
    flags = []
    for page_number in range(1, total_pages + 1):
        page = paginate(items, page_number, limit)
        collected.extend(page.data)
        flags.append(page.pagination.has_more)

    assert collected == items
    assert flags == [True] * (total_pages - 1) + [False] * min(total_pages, 1)


def test_pagination_metadata() -> None:
    page = paginate(list(range(45)), 2, 20)

    assert page.data == list(range(20, 40))
    assert page.pagination.to_dict() == {
        'page': 2,
        'limit': 20,
        'total_count': 45,
        'total_pages': 3,
        'has_more': True,
    }


def test_page_past_the_end_is_empty() -> None:
    page = paginate([1, 2, 3], 5, 2)

    assert page.data == []
    assert page.pagination.total_pages == 2
    assert page.pagination.has_more is False


@pytest.mark.parametrize('page_number, limit', [(0, 10), (-1, 10), (1, 0), (1, 101)])
def test_invalid_requests_are_rejected(page_number: int, limit: int) -> None:
    with pytest.raises(InvalidPagination):
        paginate([1, 2, 3], page_number, limit)


def test_query_pagination_fetches_only_the_requested_slice() -> None:
    calls = []

    def fetch(offset: int, limit: int) -> list[int]:
        calls.append((offset, limit))
        return list(range(offset, min(offset + limit, 25)))

    page = paginate_query(25, 3, 10, fetch)
    beyond = paginate_query(25, 4, 10, fetch)

    assert page.data == [20, 21, 22, 23, 24]
    assert page.pagination.has_more is False
    assert beyond.data == []
    assert calls == [(20, 10)]
