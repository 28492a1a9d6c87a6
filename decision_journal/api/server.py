"""Minimal HTTP endpoints exposing decisions, trades and performance."""

from __future__ import annotations

import json
import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Tuple
from urllib.parse import parse_qs, urlsplit

from sqlalchemy.exc import SQLAlchemyError

from ..errors import InvalidPagination, JournalError, UnknownTrader
from ..journal.codec import closed_position_to_dict, decision_to_dict
from .pagination import DEFAULT_PAGE_SIZE

if TYPE_CHECKING:
    from ..registry import TraderJournal, TraderRegistry


logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Query = Mapping[str, str]


class BadRequest(JournalError):
    kind = 'bad_request'


def _int_param(query: Query, name: str, default: int) -> int:
    raw = query.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise BadRequest(f'{name} must be an integer (got {raw!r})') from error


def _journal(registry: 'TraderRegistry', query: Query) -> 'TraderJournal':
    trader_id = query.get('trader_id')
    if not trader_id:
        raise BadRequest('trader_id parameter is required')
    return registry.get(trader_id)


def decisions(registry: 'TraderRegistry', query: Query) -> Payload:
    page = _journal(registry, query).decisions_page(
        _int_param(query, 'page', 1),
        _int_param(query, 'limit', DEFAULT_PAGE_SIZE),
    )
    return {
        'decisions': [decision_to_dict(record) for record in page.data],
        'pagination': page.pagination.to_dict(),
    }


def latest_decisions(registry: 'TraderRegistry', query: Query) -> Payload:
    records = _journal(registry, query).latest_decisions(_int_param(query, 'limit', 5))
    return {'decisions': [decision_to_dict(record) for record in records]}


def closed_trades(registry: 'TraderRegistry', query: Query) -> Payload:
    page = _journal(registry, query).closed_positions_page(
        _int_param(query, 'page', 1),
        _int_param(query, 'limit', DEFAULT_PAGE_SIZE),
    )
    return {
        'data': [closed_position_to_dict(position) for position in page.data],
        'pagination': page.pagination.to_dict(),
    }


def performance(registry: 'TraderRegistry', query: Query) -> Payload:
    journal = _journal(registry, query)
    recent_count = _int_param(query, 'recent_count', journal.performance_window)
    if recent_count < 1:
        raise BadRequest('recent_count must be >= 1')
    return journal.performance(recent_count).to_dict()


def statistics(registry: 'TraderRegistry', query: Query) -> Payload:
    return _journal(registry, query).statistics().to_dict()


def equity_history(registry: 'TraderRegistry', query: Query) -> Payload:
    limit = _int_param(query, 'limit', 0)
    return {'data': _journal(registry, query).equity_history(limit or None)}


def traders(registry: 'TraderRegistry', query: Query) -> Payload:
    return {'traders': registry.trader_ids()}


Route = Callable[['TraderRegistry', Query], Payload]

ROUTES: Dict[str, Route] = {
    '/api/decisions': decisions,
    '/api/decisions/latest': latest_decisions,
    '/api/trades': closed_trades,
    '/api/performance': performance,
    '/api/statistics': statistics,
    '/api/equity-history': equity_history,
    '/api/traders': traders,
}


def dispatch(registry: 'TraderRegistry', path: str) -> Tuple[HTTPStatus, Payload]:
    """Resolve ``path`` (with query string) to a status and JSON payload."""

    parts = urlsplit(path)
    route = ROUTES.get(parts.path.rstrip('/') or '/')
    if route is None:
        return HTTPStatus.NOT_FOUND, {'error': f'Unknown endpoint {parts.path}', 'kind': 'not_found'}
    query = {key: values[-1] for key, values in parse_qs(parts.query).items()}
    try:
        return HTTPStatus.OK, route(registry, query)
    except UnknownTrader as error:
        return HTTPStatus.NOT_FOUND, {'error': str(error), 'kind': error.kind}
    except (BadRequest, InvalidPagination) as error:
        return HTTPStatus.BAD_REQUEST, {'error': str(error), 'kind': error.kind}
    except (JournalError, SQLAlchemyError) as error:
        logger.exception('Request %s failed', parts.path)
        kind = getattr(error, 'kind', 'storage_error')
        return HTTPStatus.INTERNAL_SERVER_ERROR, {'error': str(error), 'kind': kind}


def _make_handler(registry: 'TraderRegistry') -> type[BaseHTTPRequestHandler]:
    class JournalHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler contract)
            status, payload = dispatch(registry, self.path)
            body = json.dumps(payload).encode('utf-8')
            self.send_response(status)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args) -> None:  # noqa: A003 (shadow builtins)
            logger.debug('%s - %s', self.address_string(), format % args)

    return JournalHandler


def serve_journal_api(
    registry: 'TraderRegistry',
    host: str = '127.0.0.1',
    port: int = 8000,
) -> Tuple[ThreadingHTTPServer, threading.Thread]:
    """Start the query API in a background thread."""
    handler = _make_handler(registry)
    server = ThreadingHTTPServer((host, port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


__all__ = ['ROUTES', 'dispatch', 'serve_journal_api']
