"""Performance metric utilities for closed trades."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..database.models import ClosedPosition
from ..journal.codec import format_timestamp

DEFAULT_WINDOW = 1000
SAMPLE_TRADE_COUNT = 10
# Reported when there are winners but no losing trades to divide by.
NO_LOSS_PROFIT_FACTOR = 999.0
EMPTY_WINDOW_MESSAGE = 'No closed trades yet; performance metrics will appear after the first position is closed.'


def _ensure_list(values: Iterable[float]) -> List[float]:
    if isinstance(values, list):
        return values
    return list(values)


def _cumulative(values: Iterable[float]) -> List[float]:
    curve: List[float] = []
    total = 0.0
    for value in values:
        total += value
        curve.append(total)
    return curve


def sharpe_ratio(returns: Iterable[float]) -> float:
    """Mean over population standard deviation; 0 with fewer than two samples."""

    values = _ensure_list(returns)
    if len(values) < 2:
        return 0.0
    avg = sum(values) / len(values)
    variance = sum((r - avg) ** 2 for r in values) / len(values)
    std_dev = math.sqrt(variance)
    if std_dev == 0:
        return 0.0
    return avg / std_dev


def max_drawdown(pnls: Iterable[float]) -> float:
    """Largest peak-to-trough decline of the cumulative PnL curve.

    The curve starts at zero before the first trade, so an opening loss
    counts as drawdown. The result is non-negative and in PnL units.
    """

    peak = 0.0
    worst = 0.0
    for value in _cumulative(pnls):
        peak = max(peak, value)
        worst = max(worst, peak - value)
    return worst


def profit_factor(winning: Sequence[float], losing: Sequence[float]) -> float:
    gross_profit = sum(winning)
    gross_loss = abs(sum(losing))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return NO_LOSS_PROFIT_FACTOR if gross_profit > 0 else 0.0


@dataclass
class PerformanceAnalysis:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_profit: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    avg_holding_time_minutes: float = 0.0
    sample_trades: List[ClosedPosition] = field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def empty(cls, message: str = EMPTY_WINDOW_MESSAGE) -> 'PerformanceAnalysis':
        return cls(message=message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': self.win_rate,
            'avg_profit': self.avg_profit,
            'avg_loss': self.avg_loss,
            'profit_factor': self.profit_factor,
            'sharpe_ratio': self.sharpe_ratio,
            'max_drawdown': self.max_drawdown,
            'avg_holding_time_minutes': self.avg_holding_time_minutes,
            'sample_trades': [
                {
                    'symbol': trade.symbol,
                    'side': trade.side,
                    'open_time': format_timestamp(trade.open_time),
                    'close_time': format_timestamp(trade.close_time),
                    'pnl': trade.pnl,
                    'pnl_pct': trade.pnl_pct,
                    'leverage': trade.leverage,
                }
                for trade in self.sample_trades
            ],
        }
        if self.message is not None:
            payload['message'] = self.message
        return payload


def analyze(closed_trades: Iterable[ClosedPosition], window_size: int = DEFAULT_WINDOW) -> PerformanceAnalysis:
    """Summarize the most recent ``window_size`` closed trades.

    Pure computation: the input is ordered chronologically before the window
    is taken, and nothing is read from or written to storage.
    """

    ordered = sorted(closed_trades, key=lambda trade: (trade.close_time, trade.id))
    window = ordered[-window_size:] if window_size > 0 else []
    if not window:
        return PerformanceAnalysis.empty()

    pnls = [trade.pnl for trade in window]
    winning = [pnl for pnl in pnls if pnl > 0]
    losing = [pnl for pnl in pnls if pnl < 0]
    total = len(window)

    return PerformanceAnalysis(
        total_trades=total,
        winning_trades=len(winning),
        losing_trades=len(losing),
        win_rate=len(winning) / total * 100,
        avg_profit=sum(winning) / len(winning) if winning else 0.0,
        avg_loss=sum(losing) / len(losing) if losing else 0.0,
        profit_factor=profit_factor(winning, losing),
        sharpe_ratio=sharpe_ratio(trade.pnl_pct for trade in window),
        max_drawdown=max_drawdown(pnls),
        avg_holding_time_minutes=sum(trade.holding_time_minutes for trade in window) / total,
        sample_trades=list(reversed(window[-SAMPLE_TRADE_COUNT:])),
    )


__all__ = [
    'DEFAULT_WINDOW',
    'NO_LOSS_PROFIT_FACTOR',
    'PerformanceAnalysis',
    'analyze',
    'max_drawdown',
    'profit_factor',
    'sharpe_ratio',
]
