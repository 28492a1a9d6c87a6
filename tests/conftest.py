"""Shared pytest fixtures for the decision journal tests."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from decision_journal.database import DatabaseManager  # noqa: E402
from decision_journal.database.models import (  # noqa: E402
    AccountSnapshot,
    Decision,
    DecisionRecord,
    ExecutionResult,
    PositionSnapshot,
)
from decision_journal.journal.codec import decision_to_dict  # noqa: E402

BASE_TIME = datetime(2025, 10, 28, 12, 0, tzinfo=timezone.utc)
CYCLE_MINUTES = 3


def cycle_time(cycle_number: int) -> datetime:
    return BASE_TIME + timedelta(minutes=CYCLE_MINUTES * cycle_number)


RecordFactory = Callable[..., DecisionRecord]


@pytest.fixture
def database(tmp_path: Path) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(f'sqlite:///{tmp_path / "journal.db"}')
    yield manager
    manager.close()


@pytest.fixture
def make_record() -> RecordFactory:
    def _make(
        cycle_number: int,
        positions: Sequence[PositionSnapshot] = (),
        decisions: Sequence[Decision] = (),
        *,
        trader_id: str = 'deepseek_trader',
        equity: float = 1_000.0,
        success: bool = True,
        results: Sequence[ExecutionResult] | None = None,
    ) -> DecisionRecord:
        if results is None:
            results = [
                ExecutionResult(symbol=decision.symbol, action=decision.action, success=True)
                for decision in decisions
                if decision.action not in ('hold', 'wait')
            ]
        return DecisionRecord(
            timestamp=cycle_time(cycle_number),
            cycle_number=cycle_number,
            trader_id=trader_id,
            success=success,
            account_snapshot=AccountSnapshot(
                total_equity=equity,
                available_balance=equity * 0.8,
                position_count=len(positions),
            ),
            positions_snapshot=list(positions),
            decisions=list(decisions),
            execution_results=list(results),
            cot_trace=f'cycle {cycle_number} reasoning',
        )

    return _make


def position(
    symbol: str,
    side: str,
    entry_price: float,
    mark_price: float | None = None,
    *,
    quantity: float = 1.0,
    leverage: float = 5.0,
    unrealized_pnl: float = 0.0,
) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=symbol,
        side=side,
        entry_price=entry_price,
        mark_price=entry_price if mark_price is None else mark_price,
        quantity=quantity,
        leverage=leverage,
        unrealized_pnl=unrealized_pnl,
    )


@pytest.fixture
def make_position() -> Callable[..., PositionSnapshot]:
    return position


def write_legacy_log(directory: Path, record: DecisionRecord, *, with_success: bool = False) -> Path:
    """Write ``record`` as a per-cycle JSON file the way the old logger did.

    Files from before the ``success`` flag existed carry no such key.
    """

    payload = decision_to_dict(record)
    if not with_success:
        payload.pop('success')
    payload['performance'] = {'runtime_minutes': record.cycle_number * CYCLE_MINUTES, 'total_cycles': record.cycle_number}
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f'decision_2025-10-28_12-00-00-000_cycle{record.cycle_number}.json'
    path.write_text(json.dumps(payload, indent=2), encoding='utf-8')
    return path
