"""Persistent, incrementally maintained index of closed positions."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import delete, func, select

from ..database import DatabaseManager
from ..database.models import ClosedPosition, ClosedPositionRow, IndexState
from ..errors import CorruptRecord
from .codec import decode_closed_position, encode_closed_position
from .decision_log import DecisionLogStore
from .matching import ClosedPositionMatcher, PositionTracker


logger = logging.getLogger(__name__)


class ClosedPositionIndexer:
    """Owns the derived closed-position index of one trader.

    The decision log is read-only input. Each processed cycle is committed
    together with the advanced watermark and tracker state, so the index is
    always a consistent prefix of the log and an interrupted run resumes where
    it stopped.
    """

    def __init__(self, database: DatabaseManager, store: DecisionLogStore) -> None:
        self._database = database
        self._store = store
        self._trader_id = store.trader_id
        self._lock = threading.Lock()

    @property
    def trader_id(self) -> str:
        return self._trader_id

    def last_indexed_cycle(self) -> int:
        with self._database.session() as session:
            state = session.get(IndexState, self._trader_id)
            return state.last_cycle if state is not None else 0

    def is_current(self) -> bool:
        """True when every recorded cycle has been indexed."""

        return self.last_indexed_cycle() >= self._store.latest_cycle_number()

    def sync(self, stop_event: Optional[threading.Event] = None) -> int:
        """Index cycles newer than the watermark; return positions added."""

        with self._lock:
            matcher, last_cycle = self._load_matcher()
            added = 0
            processed = 0
            for cycle_number, record in self._store.scan_since(last_cycle):
                if stop_event is not None and stop_event.is_set():
                    logger.info(
                        'Indexing for %s interrupted after cycle %s',
                        self._trader_id,
                        last_cycle,
                    )
                    break
                # Undecodable cycles only advance the watermark.
                closed = matcher.process(record) if record is not None else []
                self._commit_cycle(cycle_number, closed, matcher)
                last_cycle = cycle_number
                added += len(closed)
                processed += 1
            if processed:
                logger.info(
                    'Indexed %s cycle(s) for %s up to cycle %s (%s closed position(s) added)',
                    processed,
                    self._trader_id,
                    last_cycle,
                    added,
                )
            return added

    def rebuild(self, stop_event: Optional[threading.Event] = None) -> int:
        """Drop the derived index and replay the full decision log."""

        with self._lock:
            with self._database.session() as session:
                session.execute(delete(ClosedPositionRow).where(ClosedPositionRow.trader_id == self._trader_id))
                session.execute(delete(IndexState).where(IndexState.trader_id == self._trader_id))
        logger.info('Cleared closed-position index for %s; rebuilding', self._trader_id)
        return self.sync(stop_event)

    def _load_matcher(self) -> tuple[ClosedPositionMatcher, int]:
        with self._database.session() as session:
            state = session.get(IndexState, self._trader_id)
            if state is None:
                return ClosedPositionMatcher(self._trader_id), 0
            last_cycle, next_id, raw_state = state.last_cycle, state.next_id, state.tracker_state
        try:
            tracker = PositionTracker.from_dict(json.loads(raw_state or '{}'))
        except (ValueError, KeyError, TypeError, CorruptRecord) as error:
            # The rows already written stay valid; only open cursors are lost.
            logger.warning('Discarding unreadable tracker state for %s: %s', self._trader_id, error)
            tracker = PositionTracker()
        return ClosedPositionMatcher(self._trader_id, tracker, next_id), last_cycle

    def _commit_cycle(
        self,
        cycle_number: int,
        closed: Iterable[ClosedPosition],
        matcher: ClosedPositionMatcher,
    ) -> None:
        with self._database.session() as session:
            for position in closed:
                session.add(
                    ClosedPositionRow(
                        trader_id=self._trader_id,
                        id=position.id,
                        cycle_number=position.cycle_number,
                        symbol=position.symbol,
                        close_time=position.close_time,
                        low_confidence=position.low_confidence,
                        payload=encode_closed_position(position),
                    )
                )
            state = session.get(IndexState, self._trader_id)
            if state is None:
                state = IndexState(trader_id=self._trader_id)
                session.add(state)
            state.last_cycle = cycle_number
            state.next_id = matcher.next_id
            state.tracker_state = json.dumps(matcher.tracker.to_dict())
            state.updated_at = datetime.now(timezone.utc)

    def count(self) -> int:
        with self._database.session() as session:
            return session.execute(
                select(func.count()).select_from(ClosedPositionRow).where(
                    ClosedPositionRow.trader_id == self._trader_id
                )
            ).scalar_one()

    def get_page(self, offset: int, limit: int) -> List[ClosedPosition]:
        """Return a newest-first slice of the index."""

        if limit <= 0:
            return []
        stmt = (
            select(ClosedPositionRow.id, ClosedPositionRow.payload)
            .where(ClosedPositionRow.trader_id == self._trader_id)
            .order_by(ClosedPositionRow.id.desc())
            .offset(max(offset, 0))
            .limit(limit)
        )
        with self._database.session() as session:
            rows = session.execute(stmt).all()
        return list(self._decode_rows(rows))

    def recent(self, limit: int) -> List[ClosedPosition]:
        """Return the latest ``limit`` positions in chronological order."""

        return list(reversed(self.get_page(0, limit)))

    def list_all(self) -> List[ClosedPosition]:
        stmt = (
            select(ClosedPositionRow.id, ClosedPositionRow.payload)
            .where(ClosedPositionRow.trader_id == self._trader_id)
            .order_by(ClosedPositionRow.id.asc())
        )
        with self._database.session() as session:
            rows = session.execute(stmt).all()
        return list(self._decode_rows(rows))

    def _decode_rows(self, rows: Iterable) -> Iterator[ClosedPosition]:
        for row in rows:
            try:
                yield decode_closed_position(row.payload)
            except CorruptRecord as error:
                logger.warning('Skipping corrupt closed position %s for %s: %s', row.id, self._trader_id, error)


__all__ = ['ClosedPositionIndexer']
