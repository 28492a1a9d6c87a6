"""Pairing of close actions with the cycle that opened the position.

Decision records carry a pre-execution snapshot of open positions. Comparing
consecutive snapshots tells when a position first appeared; that cycle is the
position's *open cursor*. The comparison is modelled as a small state machine
per ``(symbol, side)`` advanced once per processed cycle.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..database.models import ClosedPosition, Decision, DecisionRecord, PositionSnapshot
from ..errors import UnmatchedClose
from .codec import format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)

CLOSE_ACTIONS = {'close_long': 'long', 'close_short': 'short'}
OPEN_ACTIONS = {'open_long': 'long', 'open_short': 'short'}

PositionKey = Tuple[str, str]

# Relative tolerance before a snapshot PnL is reported as inconsistent with prices.
PNL_CROSS_CHECK_TOLERANCE = 0.05


class PositionState(str, enum.Enum):
    ABSENT = 'absent'
    OPEN = 'open'
    CLOSED = 'closed'


@dataclass
class TrackedPosition:
    """State of one ``(symbol, side)`` key plus its latest observation."""

    state: PositionState = PositionState.ABSENT
    since_cycle: Optional[int] = None
    since_time: Optional[datetime] = None
    entry_price: Optional[float] = None
    open_inferred: bool = False
    closed_cycle: Optional[int] = None
    last_seen_cycle: Optional[int] = None
    last_mark_price: float = 0.0
    last_entry_price: float = 0.0
    last_quantity: float = 0.0
    last_leverage: float = 1.0
    last_unrealized_pnl: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['state'] = self.state.value
        data['since_time'] = format_timestamp(self.since_time) if self.since_time else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> 'TrackedPosition':
        values = dict(data)
        values['state'] = PositionState(values.get('state', PositionState.ABSENT.value))
        since_time = values.get('since_time')
        values['since_time'] = parse_timestamp(since_time) if since_time else None
        return cls(**values)


@dataclass
class OpenAction:
    cycle_number: int
    timestamp: datetime
    # Entry price from the first later snapshot that shows the position.
    entry_price: Optional[float] = None


class PositionTracker:
    """Per-key state machine ``absent -> open -> closed``.

    A key becomes ``open`` at cycle *c* when it is present in the snapshot of
    *c* but was not open after the previously processed cycle. A key that is
    open and missing from a snapshot returns to ``absent``; a processed close
    action moves it to ``closed``.
    """

    def __init__(self) -> None:
        self._positions: Dict[PositionKey, TrackedPosition] = {}
        self._open_actions: Dict[PositionKey, OpenAction] = {}
        self.last_cycle: Optional[int] = None

    def get(self, symbol: str, side: str) -> Optional[TrackedPosition]:
        return self._positions.get((symbol, side))

    def last_open_action(self, symbol: str, side: str) -> Optional[OpenAction]:
        return self._open_actions.get((symbol, side))

    def observe(self, record: DecisionRecord) -> None:
        """Advance every key with the snapshot of ``record``."""

        present = set()
        for position in record.positions_snapshot:
            key = (position.symbol, position.side)
            present.add(key)
            tracked = self._positions.setdefault(key, TrackedPosition())
            if tracked.state is not PositionState.OPEN:
                tracked.state = PositionState.OPEN
                tracked.since_cycle = record.cycle_number
                tracked.since_time = record.timestamp
                tracked.entry_price = position.entry_price
                # Without a preceding snapshot the position may predate the log.
                tracked.open_inferred = self.last_cycle is None
                tracked.closed_cycle = None
            tracked.last_seen_cycle = record.cycle_number
            tracked.last_mark_price = position.mark_price
            tracked.last_entry_price = position.entry_price
            tracked.last_quantity = position.quantity
            tracked.last_leverage = position.leverage
            tracked.last_unrealized_pnl = position.unrealized_pnl
        for key, tracked in self._positions.items():
            if key not in present and tracked.state is PositionState.OPEN:
                tracked.state = PositionState.ABSENT

        for key, action in self._open_actions.items():
            if action.entry_price is None and key in present:
                action.entry_price = record.find_position(*key).entry_price

        for decision in record.decisions:
            side = OPEN_ACTIONS.get(decision.action)
            if side is not None:
                self._open_actions[(decision.symbol, side)] = OpenAction(record.cycle_number, record.timestamp)
        self.last_cycle = record.cycle_number

    def mark_closed(self, symbol: str, side: str, cycle_number: int) -> None:
        tracked = self._positions.setdefault((symbol, side), TrackedPosition())
        tracked.state = PositionState.CLOSED
        tracked.closed_cycle = cycle_number
        tracked.since_cycle = None
        tracked.since_time = None
        tracked.entry_price = None
        tracked.open_inferred = False
        self._open_actions.pop((symbol, side), None)

    def to_dict(self) -> Dict[str, object]:
        return {
            'last_cycle': self.last_cycle,
            'positions': [
                {'symbol': symbol, 'side': side, **tracked.to_dict()}
                for (symbol, side), tracked in self._positions.items()
            ],
            'open_actions': [
                {
                    'symbol': symbol,
                    'side': side,
                    'cycle_number': action.cycle_number,
                    'timestamp': format_timestamp(action.timestamp),
                    'entry_price': action.entry_price,
                }
                for (symbol, side), action in self._open_actions.items()
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> 'PositionTracker':
        tracker = cls()
        tracker.last_cycle = data.get('last_cycle')
        for item in data.get('positions', []):
            values = dict(item)
            key = (values.pop('symbol'), values.pop('side'))
            tracker._positions[key] = TrackedPosition.from_dict(values)
        for item in data.get('open_actions', []):
            tracker._open_actions[(item['symbol'], item['side'])] = OpenAction(
                item['cycle_number'], parse_timestamp(item['timestamp']), item.get('entry_price')
            )
        return tracker


def price_change_pct(side: str, entry_price: float, exit_price: float) -> float:
    """Unleveraged price change in percent, positive when the side profited."""

    if not entry_price:
        return 0.0
    if side == 'long':
        return (exit_price - entry_price) / entry_price * 100
    return (entry_price - exit_price) / entry_price * 100


def expected_pnl(side: str, entry_price: float, exit_price: float, quantity: float) -> float:
    """Price difference times quantity; used to sanity check snapshot PnL."""

    direction = 1.0 if side == 'long' else -1.0
    return (exit_price - entry_price) * quantity * direction


def _execution_failed(record: DecisionRecord, decision: Decision) -> bool:
    for result in record.execution_results:
        if result.symbol == decision.symbol and result.action == decision.action:
            return not result.success
    return False


class ClosedPositionMatcher:
    """Turns an ascending stream of decision records into closed positions."""

    def __init__(self, trader_id: str, tracker: Optional[PositionTracker] = None, next_id: int = 1) -> None:
        self.trader_id = trader_id
        self.tracker = tracker or PositionTracker()
        self.next_id = next_id

    def process(self, record: DecisionRecord) -> List[ClosedPosition]:
        """Advance the tracker with ``record`` and return its closed positions."""

        self.tracker.observe(record)
        closed: List[ClosedPosition] = []
        for decision in record.decisions:
            side = CLOSE_ACTIONS.get(decision.action)
            if side is None:
                continue
            if _execution_failed(record, decision):
                logger.info(
                    'Ignoring failed %s %s in cycle %s',
                    decision.action,
                    decision.symbol,
                    record.cycle_number,
                )
                continue
            position = self._close(record, decision, side)
            if position is not None:
                closed.append(position)
        return closed

    def _close(self, record: DecisionRecord, decision: Decision, side: str) -> Optional[ClosedPosition]:
        symbol = decision.symbol
        tracked = self.tracker.get(symbol, side)
        if tracked is not None and tracked.closed_cycle == record.cycle_number:
            logger.debug('Duplicate %s for %s in cycle %s', decision.action, symbol, record.cycle_number)
            return None

        snapshot: Optional[PositionSnapshot] = record.find_position(symbol, side)
        low_confidence = False
        if snapshot is None:
            if tracked is None or tracked.last_seen_cycle is None:
                logger.warning(
                    'Cannot price %s %s closed in cycle %s: position never observed',
                    symbol,
                    side,
                    record.cycle_number,
                )
                return None
            if tracked.state is PositionState.CLOSED or tracked.last_seen_cycle <= (tracked.closed_cycle or 0):
                logger.warning(
                    'Ignoring %s %s in cycle %s: position already closed in cycle %s',
                    decision.action,
                    symbol,
                    record.cycle_number,
                    tracked.closed_cycle,
                )
                return None
            logger.warning(
                '%s %s missing from cycle %s snapshot; using cycle %s values',
                symbol,
                side,
                record.cycle_number,
                tracked.last_seen_cycle,
            )
            low_confidence = True
            snapshot = PositionSnapshot(
                symbol=symbol,
                side=side,
                entry_price=tracked.last_entry_price,
                mark_price=tracked.last_mark_price,
                quantity=tracked.last_quantity,
                leverage=tracked.last_leverage,
                unrealized_pnl=tracked.last_unrealized_pnl,
            )

        try:
            open_time, entry_price, inferred = self._resolve_open(record, symbol, side, snapshot)
            low_confidence = low_confidence or inferred
        except UnmatchedClose as unmatched:
            logger.warning('%s; using the closing cycle as the open', unmatched)
            open_time, entry_price = record.timestamp, snapshot.entry_price
            low_confidence = True

        exit_price = snapshot.mark_price
        pnl = snapshot.unrealized_pnl
        estimate = expected_pnl(side, entry_price, exit_price, snapshot.quantity)
        if abs(estimate - pnl) > PNL_CROSS_CHECK_TOLERANCE * max(abs(pnl), abs(estimate), 1e-9):
            logger.debug(
                'Snapshot PnL %.4f for %s %s differs from price estimate %.4f',
                pnl,
                symbol,
                side,
                estimate,
            )

        position = ClosedPosition(
            id=self.next_id,
            trader_id=self.trader_id,
            cycle_number=record.cycle_number,
            symbol=symbol,
            side=side,
            action=decision.action,
            open_time=open_time,
            close_time=record.timestamp,
            entry_price=entry_price,
            exit_price=exit_price,
            quantity=snapshot.quantity,
            leverage=snapshot.leverage,
            pnl=pnl,
            pnl_pct=price_change_pct(side, entry_price, exit_price),
            holding_time_minutes=(record.timestamp - open_time).total_seconds() / 60,
            reasoning=decision.reasoning or None,
            low_confidence=low_confidence,
        )
        self.next_id += 1
        self.tracker.mark_closed(symbol, side, record.cycle_number)
        return position

    def _resolve_open(
        self,
        record: DecisionRecord,
        symbol: str,
        side: str,
        snapshot: PositionSnapshot,
    ) -> Tuple[datetime, float, bool]:
        """Return ``(open_time, entry_price, low_confidence)`` for a close."""

        tracked = self.tracker.get(symbol, side)
        if (
            tracked is not None
            and tracked.since_cycle is not None
            and tracked.since_time is not None
            and tracked.since_cycle < record.cycle_number
        ):
            entry_price = tracked.entry_price or snapshot.entry_price
            return tracked.since_time, entry_price, tracked.open_inferred

        action = self.tracker.last_open_action(symbol, side)
        if action is not None and action.cycle_number < record.cycle_number:
            entry_price = action.entry_price if action.entry_price is not None else snapshot.entry_price
            return action.timestamp, entry_price, False

        raise UnmatchedClose(symbol, side, record.cycle_number)


def extract_closed_positions(records: Iterable[DecisionRecord], trader_id: str = '') -> List[ClosedPosition]:
    """Derive closed positions from decision records in ascending cycle order."""

    ordered = sorted(records, key=lambda record: record.cycle_number)
    matcher = ClosedPositionMatcher(trader_id or (ordered[0].trader_id if ordered else ''))
    closed: List[ClosedPosition] = []
    for record in ordered:
        closed.extend(matcher.process(record))
    return closed


__all__ = [
    'CLOSE_ACTIONS',
    'ClosedPositionMatcher',
    'OPEN_ACTIONS',
    'PositionState',
    'PositionTracker',
    'TrackedPosition',
    'expected_pnl',
    'extract_closed_positions',
    'price_change_pct',
]
