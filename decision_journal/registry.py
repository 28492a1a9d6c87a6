"""Per-trader journal facade and the registry that owns them."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .analytics import CycleStatistics, PerformanceAnalysis, analyze, equity_history, summarize_cycles
from .analytics.performance_metrics import DEFAULT_WINDOW
from .api.pagination import DEFAULT_PAGE_SIZE, Page, paginate_query
from .database import DatabaseManager
from .database.models import ClosedPosition, DecisionRecord
from .errors import JournalError, UnknownTrader
from .journal import ClosedPositionIndexer, DecisionLogStore, extract_closed_positions


logger = logging.getLogger(__name__)


class TraderJournal:
    """Decision log, closed-position index and analytics for one trader."""

    def __init__(
        self,
        trader_id: str,
        database: DatabaseManager,
        *,
        performance_window: int = DEFAULT_WINDOW,
    ) -> None:
        self.trader_id = trader_id
        self.store = DecisionLogStore(database, trader_id)
        self.indexer = ClosedPositionIndexer(database, self.store)
        self.performance_window = performance_window

    def record(self, record: DecisionRecord) -> DecisionRecord:
        """Append a cycle and extend the closed-position index.

        Called from the trading loop, which is the single writer for both.
        Once the append has committed the cycle counts as recorded: an
        indexing failure is logged and picked up by the next ``sync``.
        """

        self.store.append(record)
        try:
            self.indexer.sync()
        except (JournalError, SQLAlchemyError):
            logger.exception(
                'Indexing failed for %s after cycle %s; the index will catch up on the next sync',
                self.trader_id,
                record.cycle_number,
            )
        return record

    def import_legacy_logs(self, log_root: str | Path) -> Tuple[int, int]:
        """Import ``<log_root>/<trader_id>/decision_*.json`` and index it."""

        imported, skipped = self.store.import_legacy_logs(Path(log_root) / self.trader_id)
        self.indexer.sync()
        return imported, skipped

    def decisions_page(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[DecisionRecord]:
        return paginate_query(self.store.count(), page, limit, self.store.get_page)

    def latest_decisions(self, limit: int = 5) -> List[DecisionRecord]:
        return self.store.get_recent(limit)

    def closed_positions_page(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[ClosedPosition]:
        return paginate_query(self.indexer.count(), page, limit, self.indexer.get_page)

    def closed_positions(self, window_size: int) -> List[ClosedPosition]:
        """Most recent closed trades, oldest first.

        Reads the derived index when it is caught up with the log, otherwise
        derives the trades from the raw log without touching the index.
        """

        if self.indexer.is_current():
            return self.indexer.recent(window_size)
        logger.info('Closed-position index for %s is behind the log; deriving from raw decisions', self.trader_id)
        trades = extract_closed_positions(self.store.list_all(), self.trader_id)
        return trades[-window_size:] if window_size > 0 else []

    def performance(self, recent_count: Optional[int] = None) -> PerformanceAnalysis:
        window = recent_count if recent_count is not None else self.performance_window
        return analyze(self.closed_positions(window), window)

    def statistics(self) -> CycleStatistics:
        return summarize_cycles(self.store.list_all())

    def equity_history(self, limit: Optional[int] = None) -> List[Dict[str, object]]:
        records = self.store.get_recent(limit) if limit else self.store.list_all()
        return equity_history(records)


class TraderRegistry:
    """Maps trader ids to their journals.

    Built once by the composition root and handed to request handlers.
    """

    def __init__(self, database: DatabaseManager, *, performance_window: int = DEFAULT_WINDOW) -> None:
        self._database = database
        self._performance_window = performance_window
        self._journals: Dict[str, TraderJournal] = {}
        self._lock = threading.Lock()

    def register(self, trader_id: str) -> TraderJournal:
        with self._lock:
            journal = self._journals.get(trader_id)
            if journal is None:
                journal = TraderJournal(
                    trader_id,
                    self._database,
                    performance_window=self._performance_window,
                )
                self._journals[trader_id] = journal
                logger.info('Registered trader %s', trader_id)
            return journal

    def register_all(self, trader_ids: Iterable[str]) -> List[TraderJournal]:
        return [self.register(trader_id) for trader_id in trader_ids]

    def get(self, trader_id: str) -> TraderJournal:
        journal = self._journals.get(trader_id)
        if journal is None:
            raise UnknownTrader(trader_id)
        return journal

    def trader_ids(self) -> List[str]:
        return sorted(self._journals)

    def __contains__(self, trader_id: object) -> bool:
        return trader_id in self._journals

    def __len__(self) -> int:
        return len(self._journals)


__all__ = ['TraderJournal', 'TraderRegistry']
