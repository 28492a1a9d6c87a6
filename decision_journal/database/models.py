"""SQLAlchemy ORM models and typed records for persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class DecisionCycle(Base):
    """One durable decision cycle, keyed by trader and cycle number."""

    __tablename__ = 'decision_cycles'
    __table_args__ = (
        Index('ix_decision_cycles_trader_timestamp', 'trader_id', 'timestamp'),
    )

    trader_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    cycle_number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    payload: Mapped[str] = mapped_column(Text)


class ClosedPositionRow(Base):
    """Derived closed position, keyed by trader and per-trader sequence id."""

    __tablename__ = 'closed_positions'
    __table_args__ = (
        Index('ix_closed_positions_trader_cycle', 'trader_id', 'cycle_number'),
    )

    trader_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    cycle_number: Mapped[int] = mapped_column(Integer)
    symbol: Mapped[str] = mapped_column(String(32))
    close_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    low_confidence: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[str] = mapped_column(Text)


class IndexState(Base):
    """Watermark and tracker state of the closed-position indexer."""

    __tablename__ = 'index_state'

    trader_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_cycle: Mapped[int] = mapped_column(Integer, default=0)
    next_id: Mapped[int] = mapped_column(Integer, default=1)
    tracker_state: Mapped[str] = mapped_column(Text, default='{}')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


@dataclass(slots=True)
class AccountSnapshot:
    """Account state captured before a cycle's actions were executed."""

    total_equity: float = 0.0
    available_balance: float = 0.0
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    margin_used: float = 0.0
    margin_used_pct: float = 0.0
    position_count: int = 0


@dataclass(slots=True)
class PositionSnapshot:
    """An open position as reported before a cycle's actions were executed."""

    symbol: str
    side: str
    entry_price: float
    mark_price: float
    quantity: float
    leverage: float
    unrealized_pnl: float
    unrealized_pnl_pct: float = 0.0


@dataclass(slots=True)
class Decision:
    """A single action requested by the model."""

    symbol: str
    action: str
    reasoning: str = ''
    leverage: Optional[float] = None
    position_size_usd: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    confidence: Optional[float] = None
    risk_usd: Optional[float] = None


@dataclass(slots=True)
class ExecutionResult:
    symbol: str
    action: str
    success: bool
    error: Optional[str] = None


@dataclass(slots=True)
class DecisionRecord:
    """Everything recorded for one trading cycle.

    Records are never mutated once appended; opaque text fields such as
    ``cot_trace`` and ``input_prompt`` are carried verbatim.
    """

    timestamp: datetime
    cycle_number: int
    trader_id: str = ''
    success: bool = True
    account_snapshot: AccountSnapshot = field(default_factory=AccountSnapshot)
    positions_snapshot: List[PositionSnapshot] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    execution_results: List[ExecutionResult] = field(default_factory=list)
    cot_trace: str = ''
    input_prompt: Optional[str] = None
    decision_json: Optional[str] = None
    candidate_coins: Optional[List[str]] = None
    execution_log: Optional[List[str]] = None
    error_message: Optional[str] = None
    performance: Optional[Dict[str, Any]] = None

    def find_position(self, symbol: str, side: str) -> Optional[PositionSnapshot]:
        for position in self.positions_snapshot:
            if position.symbol == symbol and position.side == side:
                return position
        return None


@dataclass(slots=True)
class ClosedPosition:
    """A completed open-to-close round trip derived from the decision log."""

    id: int
    trader_id: str
    cycle_number: int
    symbol: str
    side: str
    action: str
    open_time: datetime
    close_time: datetime
    entry_price: float
    exit_price: float
    quantity: float
    leverage: float
    pnl: float
    pnl_pct: float
    holding_time_minutes: float
    reasoning: Optional[str] = None
    low_confidence: bool = False

    @property
    def timestamp(self) -> datetime:
        return self.close_time


__all__ = [
    'AccountSnapshot',
    'Base',
    'ClosedPosition',
    'ClosedPositionRow',
    'Decision',
    'DecisionCycle',
    'DecisionRecord',
    'ExecutionResult',
    'IndexState',
    'PositionSnapshot',
]
