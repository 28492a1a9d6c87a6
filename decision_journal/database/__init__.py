"""Persistence layer exports."""

from .db_manager import DatabaseManager, as_utc
from .models import (
    AccountSnapshot,
    Base,
    ClosedPosition,
    ClosedPositionRow,
    Decision,
    DecisionCycle,
    DecisionRecord,
    ExecutionResult,
    IndexState,
    PositionSnapshot,
)

__all__ = [
    'AccountSnapshot',
    'Base',
    'ClosedPosition',
    'ClosedPositionRow',
    'DatabaseManager',
    'Decision',
    'DecisionCycle',
    'DecisionRecord',
    'ExecutionResult',
    'IndexState',
    'PositionSnapshot',
    'as_utc',
]
