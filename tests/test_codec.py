"""Tests for :mod:`decision_journal.journal.codec`."""

from __future__ import annotations

import json

import pytest

from decision_journal.database.models import ClosedPosition, Decision
from decision_journal.errors import CorruptRecord
from decision_journal.journal.codec import (
    decode_closed_position,
    decode_decision,
    encode_closed_position,
    encode_decision,
)

from conftest import cycle_time, position


def _legacy_payload(**overrides) -> dict:
    payload = {
        'timestamp': '2025-10-28T12:03:00.000Z',
        'cycle_number': 1,
        'trader_id': 'deepseek_trader',
        'cot_trace': '...',
        'decisions': [{'symbol': 'BTCUSDT', 'action': 'hold', 'reasoning': 'wait'}],
        'account_snapshot': {'total_equity': 1000, 'available_balance': 900},
        'positions_snapshot': [],
        'execution_results': [],
    }
    payload.update(overrides)
    return payload


def test_missing_success_defaults_to_true() -> None:
    record = decode_decision(json.dumps(_legacy_payload()))

    assert record.success is True


def test_null_success_defaults_to_true() -> None:
    record = decode_decision(json.dumps(_legacy_payload(success=None)))

    assert record.success is True


def test_explicit_failure_is_kept() -> None:
    record = decode_decision(json.dumps(_legacy_payload(success=False)))

    assert record.success is False


def test_decision_record_survives_encoding(make_record) -> None:
    original = make_record(
        7,
        positions=[position('ETHUSDT', 'short', 3296.83, 3300.0, unrealized_pnl=-0.1)],
        decisions=[Decision(symbol='ETHUSDT', action='close_short', reasoning='take profit', confidence=0.8)],
    )
    original.input_prompt = 'prompt text'
    original.performance = {'runtime_minutes': 21, 'total_cycles': 7}

    decoded = decode_decision(encode_decision(original))

    assert decoded == original
    assert decoded.timestamp == cycle_time(7)
    assert decoded.decisions[0].confidence == pytest.approx(0.8)


def test_missing_optional_sections_get_defaults() -> None:
    payload = _legacy_payload()
    del payload['positions_snapshot']
    del payload['execution_results']
    del payload['account_snapshot']

    record = decode_decision(json.dumps(payload))

    assert record.positions_snapshot == []
    assert record.execution_results == []
    assert record.account_snapshot.total_equity == 0.0


@pytest.mark.parametrize(
    'payload',
    [
        'not json',
        '[]',
        json.dumps(_legacy_payload(cycle_number='3')),
        json.dumps(_legacy_payload(timestamp='yesterday')),
        json.dumps(_legacy_payload(positions_snapshot=[{'symbol': 'BTCUSDT', 'entry_price': 'abc'}])),
        json.dumps(_legacy_payload(decisions='hold')),
    ],
)
def test_malformed_payloads_raise_corrupt_record(payload: str) -> None:
    with pytest.raises(CorruptRecord):
        decode_decision(payload)


def test_closed_position_encoding_keeps_low_confidence_flag() -> None:
    closed = ClosedPosition(
        id=3,
        trader_id='deepseek_trader',
        cycle_number=15,
        symbol='ETHUSDT',
        side='short',
        action='close_short',
        open_time=cycle_time(11),
        close_time=cycle_time(15),
        entry_price=3296.83,
        exit_price=3313.14,
        quantity=0.05,
        leverage=10,
        pnl=-0.1305,
        pnl_pct=-0.49,
        holding_time_minutes=12.0,
        low_confidence=True,
    )

    payload = json.loads(encode_closed_position(closed))
    decoded = decode_closed_position(json.dumps(payload))

    assert payload['timestamp'] == payload['close_time'] == '2025-10-28T12:45:00.000Z'
    assert 'reasoning' not in payload
    assert decoded == closed


def test_closed_position_with_unknown_side_is_corrupt() -> None:
    with pytest.raises(CorruptRecord):
        decode_closed_position(json.dumps({'id': 1, 'cycle_number': 2, 'side': 'flat'}))
