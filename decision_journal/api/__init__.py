"""HTTP query surface and pagination."""

from .pagination import Page, Pagination, paginate, paginate_query
from .server import dispatch, serve_journal_api

__all__ = ['Page', 'Pagination', 'dispatch', 'paginate', 'paginate_query', 'serve_journal_api']
