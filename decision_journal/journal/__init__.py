"""Decision log storage and the derived closed-position index."""

from .decision_log import DecisionLogStore
from .indexer import ClosedPositionIndexer
from .matching import ClosedPositionMatcher, PositionState, PositionTracker, extract_closed_positions

__all__ = [
    'ClosedPositionIndexer',
    'ClosedPositionMatcher',
    'DecisionLogStore',
    'PositionState',
    'PositionTracker',
    'extract_closed_positions',
]
