"""Command line entry point for the decision journal."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from pathlib import Path
from typing import Optional, Sequence

from decision_journal.api import serve_journal_api
from decision_journal.config import Settings, load_settings
from decision_journal.database import DatabaseManager
from decision_journal.market import OICache
from decision_journal.monitoring import configure_logging
from decision_journal.registry import TraderRegistry


logger = logging.getLogger(__name__)


def build_registry(settings: Settings, database: DatabaseManager) -> TraderRegistry:
    registry = TraderRegistry(database, performance_window=settings.performance_window)
    registry.register_all(settings.trader_ids)
    return registry


def _selected(registry: TraderRegistry, trader_id: Optional[str]) -> Sequence[str]:
    if trader_id:
        registry.register(trader_id)
        return [trader_id]
    return registry.trader_ids()


def run_server(registry: TraderRegistry, host: str, port: int) -> None:
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    server, thread = serve_journal_api(registry, host=host, port=port)
    logger.info('Journal API available at http://%s:%s/api/ for %s trader(s)', host, port, len(registry))
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
        thread.join(timeout=1)
        logger.info('Journal API stopped')


def run_reindex(registry: TraderRegistry, trader_id: Optional[str], *, rebuild: bool) -> None:
    stop = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: stop.set())
    try:
        for current in _selected(registry, trader_id):
            indexer = registry.get(current).indexer
            added = indexer.rebuild(stop) if rebuild else indexer.sync(stop)
            logger.info(
                '%s %s: %s closed position(s) added, indexed through cycle %s',
                'Rebuilt' if rebuild else 'Synced',
                current,
                added,
                indexer.last_indexed_cycle(),
            )
            if stop.is_set():
                logger.warning('Interrupted; rerun to resume from cycle %s', indexer.last_indexed_cycle())
                break
    finally:
        signal.signal(signal.SIGINT, previous)


def run_import_logs(registry: TraderRegistry, log_root: Path, trader_id: Optional[str]) -> None:
    if trader_id:
        trader_ids = [trader_id]
    else:
        found = {path.name for path in log_root.iterdir() if path.is_dir()} if log_root.is_dir() else set()
        trader_ids = sorted(found | set(registry.trader_ids()))
    if not trader_ids:
        logger.warning('No trader directories found under %s', log_root)
    for current in trader_ids:
        journal = registry.register(current)
        imported, skipped = journal.import_legacy_logs(log_root)
        logger.info(
            '%s: imported %s cycle(s), skipped %s, %s closed position(s) indexed',
            current,
            imported,
            skipped,
            journal.indexer.count(),
        )


def run_performance(registry: TraderRegistry, trader_id: str, recent_count: Optional[int]) -> None:
    registry.register(trader_id)
    analysis = registry.get(trader_id).performance(recent_count)
    print(json.dumps(analysis.to_dict(), indent=2))


def run_oi_change(settings: Settings, symbol: str, current_value: float, hours_ago: float) -> None:
    cache = OICache(settings.oi_cache_path, retention_hours=settings.oi_retention_hours)
    change = cache.calculate_change(symbol, current_value, hours_ago)
    print(json.dumps({
        'symbol': symbol,
        'samples': cache.get_record_count(symbol),
        'hours_ago': hours_ago,
        'change_pct': change,
    }, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Decision journal CLI')
    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', help='Serve the JSON query API')
    serve.add_argument('--host', help='Bind address (defaults to API_HOST)')
    serve.add_argument('--port', type=int, help='Port (defaults to API_PORT)')

    reindex = sub.add_parser('reindex', help='Index cycles added since the last run')
    reindex.add_argument('trader_id', nargs='?')

    rebuild = sub.add_parser('rebuild', help='Rebuild the closed-position index from the full log')
    rebuild.add_argument('trader_id', nargs='?')

    import_logs = sub.add_parser('import-logs', help='Import per-cycle JSON decision files')
    import_logs.add_argument('trader_id', nargs='?')
    import_logs.add_argument('--log-dir', type=Path, help='Root of <trader_id>/decision_*.json (defaults to LEGACY_LOG_DIRECTORY)')

    perf = sub.add_parser('performance', help='Print performance analysis as JSON')
    perf.add_argument('trader_id')
    perf.add_argument('--recent-count', type=int)

    oi = sub.add_parser('oi-change', help='Print OI change against the cached history')
    oi.add_argument('symbol')
    oi.add_argument('current_value', type=float)
    oi.add_argument('--hours-ago', type=float, default=4.0)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    database = DatabaseManager(settings.database_url)
    registry = build_registry(settings, database)
    try:
        if args.command == 'serve':
            run_server(registry, args.host or settings.api_host, args.port or settings.api_port)
        elif args.command == 'reindex':
            run_reindex(registry, args.trader_id, rebuild=False)
        elif args.command == 'rebuild':
            run_reindex(registry, args.trader_id, rebuild=True)
        elif args.command == 'import-logs':
            run_import_logs(registry, args.log_dir or settings.legacy_log_directory, args.trader_id)
        elif args.command == 'performance':
            run_performance(registry, args.trader_id, args.recent_count)
        elif args.command == 'oi-change':
            run_oi_change(settings, args.symbol, args.current_value, args.hours_ago)
        else:  # pragma: no cover
            raise ValueError(f'Unknown command {args.command}')
    finally:
        database.close()


if __name__ == '__main__':
    main()
