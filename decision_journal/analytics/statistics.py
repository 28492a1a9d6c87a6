"""Summary views derived by scanning decision records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List

from ..database.models import DecisionRecord
from ..journal.codec import format_timestamp
from ..journal.matching import CLOSE_ACTIONS, OPEN_ACTIONS


@dataclass
class CycleStatistics:
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    total_open_positions: int = 0
    total_close_positions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def summarize_cycles(records: Iterable[DecisionRecord]) -> CycleStatistics:
    stats = CycleStatistics()
    for record in records:
        stats.total_cycles += 1
        if record.success:
            stats.successful_cycles += 1
        else:
            stats.failed_cycles += 1
        for decision in record.decisions:
            if decision.action in OPEN_ACTIONS:
                stats.total_open_positions += 1
            elif decision.action in CLOSE_ACTIONS:
                stats.total_close_positions += 1
    return stats


def equity_history(records: Iterable[DecisionRecord]) -> List[Dict[str, object]]:
    """Account equity per cycle, oldest first."""

    points = []
    for record in sorted(records, key=lambda item: item.cycle_number):
        account = record.account_snapshot
        points.append(
            {
                'timestamp': format_timestamp(record.timestamp),
                'total_equity': account.total_equity,
                'available_balance': account.available_balance,
                'total_pnl': account.total_pnl,
                'total_pnl_pct': account.total_pnl_pct,
                'position_count': account.position_count,
                'margin_used_pct': account.margin_used_pct,
                'cycle_number': record.cycle_number,
            }
        )
    return points


__all__ = ['CycleStatistics', 'equity_history', 'summarize_cycles']
