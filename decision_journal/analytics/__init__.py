"""Performance analytics."""

from .performance_metrics import (
    DEFAULT_WINDOW,
    NO_LOSS_PROFIT_FACTOR,
    PerformanceAnalysis,
    analyze,
)
from .statistics import CycleStatistics, equity_history, summarize_cycles

__all__ = [
    'CycleStatistics',
    'DEFAULT_WINDOW',
    'NO_LOSS_PROFIT_FACTOR',
    'PerformanceAnalysis',
    'analyze',
    'equity_history',
    'summarize_cycles',
]
