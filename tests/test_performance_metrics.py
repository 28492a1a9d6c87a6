"""Tests for :mod:`decision_journal.analytics.performance_metrics`."""

from __future__ import annotations

import math
import statistics

import pytest

from decision_journal.analytics import NO_LOSS_PROFIT_FACTOR, analyze
from decision_journal.analytics.performance_metrics import max_drawdown, sharpe_ratio
from decision_journal.database.models import ClosedPosition

from conftest import cycle_time


def _trade(trade_id: int, pnl: float, pnl_pct: float, holding: float = 30.0) -> ClosedPosition:
    return ClosedPosition(
        id=trade_id,
        trader_id='deepseek_trader',
        cycle_number=trade_id * 10,
        symbol='BTCUSDT',
        side='long',
        action='close_long',
        open_time=cycle_time(trade_id * 10 - 5),
        close_time=cycle_time(trade_id * 10),
        entry_price=100.0,
        exit_price=100.0 + pnl_pct,
        quantity=1.0,
        leverage=3.0,
        pnl=pnl,
        pnl_pct=pnl_pct,
        holding_time_minutes=holding,
    )


def test_empty_window_returns_zeroed_result() -> None:
    analysis = analyze([], 1000)

    assert analysis.total_trades == 0
    assert analysis.win_rate == 0
    assert analysis.profit_factor == 0
    assert analysis.sharpe_ratio == 0
    assert analysis.max_drawdown == 0
    assert analysis.sample_trades == []
    assert analysis.message
    assert analysis.to_dict()['message'] == analysis.message


def test_single_winning_trade_reports_no_loss_sentinel() -> None:
    analysis = analyze([_trade(1, pnl=100.0, pnl_pct=2.0)], 1000)

    assert analysis.total_trades == 1
    assert analysis.win_rate == pytest.approx(100.0)
    assert analysis.profit_factor == NO_LOSS_PROFIT_FACTOR
    assert analysis.sharpe_ratio == 0
    assert analysis.max_drawdown == 0
    assert analysis.message is None


def test_break_even_trades_have_zero_profit_factor() -> None:
    analysis = analyze([_trade(1, 0.0, 0.0), _trade(2, 0.0, 0.0)], 1000)

    assert analysis.winning_trades == 0
    assert analysis.losing_trades == 0
    assert analysis.profit_factor == 0
    assert analysis.sharpe_ratio == 0


def test_mixed_trades_statistics() -> None:
    trades = [
        _trade(1, 50.0, 2.0, holding=10.0),
        _trade(2, -20.0, -1.0, holding=20.0),
        _trade(3, 30.0, 1.5, holding=30.0),
        _trade(4, -40.0, -2.0, holding=40.0),
    ]

    analysis = analyze(trades, 1000)

    assert analysis.total_trades == 4
    assert (analysis.winning_trades, analysis.losing_trades) == (2, 2)
    assert analysis.win_rate == pytest.approx(50.0)
    assert analysis.avg_profit == pytest.approx(40.0)
    assert analysis.avg_loss == pytest.approx(-30.0)
    assert analysis.profit_factor == pytest.approx(80.0 / 60.0)
    returns = [2.0, -1.0, 1.5, -2.0]
    assert analysis.sharpe_ratio == pytest.approx(statistics.fmean(returns) / statistics.pstdev(returns))
    # cumulative: 50, 30, 60, 20 -> worst decline 60 -> 20
    assert analysis.max_drawdown == pytest.approx(40.0)
    assert analysis.avg_holding_time_minutes == pytest.approx(25.0)
    assert [trade.id for trade in analysis.sample_trades] == [4, 3, 2, 1]


def test_window_uses_most_recent_trades_in_chronological_order() -> None:
    trades = [_trade(i, pnl=-10.0 if i <= 3 else 10.0, pnl_pct=1.0 * i) for i in range(1, 8)]

    analysis = analyze(reversed(trades), 4)

    assert analysis.total_trades == 4
    assert analysis.winning_trades == 4
    assert analysis.losing_trades == 0


def test_sample_trades_are_capped_at_ten() -> None:
    trades = [_trade(i, 1.0, 0.1 * i) for i in range(1, 16)]

    analysis = analyze(trades, 1000)

    assert len(analysis.sample_trades) == 10
    assert analysis.sample_trades[0].id == 15
    assert analysis.to_dict()['sample_trades'][0]['close_time'] == '2025-10-28T19:30:00.000Z'


def test_drawdown_counts_an_opening_loss() -> None:
    assert max_drawdown([-5.0, 10.0, -3.0]) == pytest.approx(5.0)
    assert max_drawdown([]) == 0.0


def test_sharpe_ratio_is_zero_for_constant_returns() -> None:
    assert sharpe_ratio([1.0, 1.0, 1.0]) == 0.0
    assert math.isfinite(sharpe_ratio([1.0, 2.0]))
