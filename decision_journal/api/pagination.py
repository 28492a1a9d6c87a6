"""Page/limit pagination shared by the decision and closed-trade queries."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Generic, List, Sequence, TypeVar

from ..errors import InvalidPagination

T = TypeVar('T')

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> 'Pagination':
        total_pages = math.ceil(total_count / limit)
        return cls(
            page=page,
            limit=limit,
            total_count=total_count,
            total_pages=total_pages,
            has_more=page < total_pages,
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class Page(Generic[T]):
    data: List[T]
    pagination: Pagination


def validate_page_request(page: int, limit: int) -> None:
    if page < 1:
        raise InvalidPagination(f'page must be >= 1 (got {page})')
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidPagination(f'limit must be between 1 and {MAX_PAGE_SIZE} (got {limit})')


def paginate(items: Sequence[T], page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[T]:
    """Slice ``items`` into page ``page`` of size ``limit``.

    A page past the end yields empty data rather than an error.
    """

    validate_page_request(page, limit)
    pagination = Pagination.build(page, limit, len(items))
    return Page(list(items[pagination.offset:pagination.offset + limit]), pagination)


def paginate_query(
    total_count: int,
    page: int,
    limit: int,
    fetch: Callable[[int, int], List[T]],
) -> Page[T]:
    """Same contract as :func:`paginate` for sources fetched by offset and limit."""

    validate_page_request(page, limit)
    pagination = Pagination.build(page, limit, total_count)
    if pagination.offset >= total_count:
        return Page([], pagination)
    return Page(fetch(pagination.offset, limit), pagination)


__all__ = [
    'DEFAULT_PAGE_SIZE',
    'MAX_PAGE_SIZE',
    'Page',
    'Pagination',
    'paginate',
    'paginate_query',
    'validate_page_request',
]
