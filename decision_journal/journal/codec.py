"""JSON codec for decision records and closed positions.

Decision records are stored as JSON documents using the same field names the
dashboard consumes. Older documents may lack fields that were added later;
those are filled with defaults on decode. In particular a missing or null
``success`` flag decodes as ``True`` so every consumer sees the same value.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from ..database.db_manager import as_utc
from ..database.models import (
    AccountSnapshot,
    ClosedPosition,
    Decision,
    DecisionRecord,
    ExecutionResult,
    PositionSnapshot,
)
from ..errors import CorruptRecord

T = TypeVar('T')

_DECISION_OPTIONAL_NUMBERS = (
    'leverage',
    'position_size_usd',
    'stop_loss',
    'take_profit',
    'confidence',
    'risk_usd',
)


def format_timestamp(value: datetime) -> str:
    """Render an instant as ISO 8601 UTC with millisecond precision."""

    return as_utc(value).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value:
        raise CorruptRecord(f'Invalid timestamp: {value!r}')
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as error:
        raise CorruptRecord(f'Invalid timestamp: {value!r}') from error
    return as_utc(parsed)


def _number(data: Mapping[str, Any], key: str, default: float = 0.0) -> float:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise CorruptRecord(f'Field {key!r} is not numeric: {value!r}')
    try:
        return float(value)
    except ValueError as error:
        raise CorruptRecord(f'Field {key!r} is not numeric: {value!r}') from error


def _optional_number(data: Mapping[str, Any], key: str) -> Optional[float]:
    if data.get(key) is None:
        return None
    return _number(data, key)


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise CorruptRecord(f'{what} is not an object')
    return value


def _list_of(data: Mapping[str, Any], key: str, decode: Callable[[Mapping[str, Any]], T]) -> List[T]:
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise CorruptRecord(f'Field {key!r} is not a list')
    return [decode(_mapping(item, key)) for item in items]


def _decode_account(data: Mapping[str, Any]) -> AccountSnapshot:
    return AccountSnapshot(
        total_equity=_number(data, 'total_equity'),
        available_balance=_number(data, 'available_balance'),
        total_pnl=_number(data, 'total_pnl'),
        total_pnl_pct=_number(data, 'total_pnl_pct'),
        margin_used=_number(data, 'margin_used'),
        margin_used_pct=_number(data, 'margin_used_pct'),
        position_count=int(_number(data, 'position_count')),
    )


def _decode_position(data: Mapping[str, Any]) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=str(data.get('symbol', '')),
        side=str(data.get('side', '')).lower(),
        entry_price=_number(data, 'entry_price'),
        mark_price=_number(data, 'mark_price'),
        quantity=_number(data, 'quantity'),
        leverage=_number(data, 'leverage', 1.0),
        unrealized_pnl=_number(data, 'unrealized_pnl'),
        unrealized_pnl_pct=_number(data, 'unrealized_pnl_pct'),
    )


def _decode_decision(data: Mapping[str, Any]) -> Decision:
    optional = {key: _optional_number(data, key) for key in _DECISION_OPTIONAL_NUMBERS}
    return Decision(
        symbol=str(data.get('symbol', '')),
        action=str(data.get('action', 'hold')),
        reasoning=str(data.get('reasoning') or ''),
        **optional,
    )


def _decode_execution_result(data: Mapping[str, Any]) -> ExecutionResult:
    return ExecutionResult(
        symbol=str(data.get('symbol', '')),
        action=str(data.get('action', '')),
        success=bool(data.get('success', False)),
        error=data.get('error'),
    )


def decision_to_dict(record: DecisionRecord) -> Dict[str, Any]:
    """Return the JSON-ready mapping for a decision record."""

    payload: Dict[str, Any] = {
        'timestamp': format_timestamp(record.timestamp),
        'cycle_number': record.cycle_number,
        'trader_id': record.trader_id,
        'success': record.success,
        'cot_trace': record.cot_trace,
        'decisions': [],
        'account_snapshot': {
            'total_equity': record.account_snapshot.total_equity,
            'available_balance': record.account_snapshot.available_balance,
            'total_pnl': record.account_snapshot.total_pnl,
            'total_pnl_pct': record.account_snapshot.total_pnl_pct,
            'margin_used': record.account_snapshot.margin_used,
            'margin_used_pct': record.account_snapshot.margin_used_pct,
            'position_count': record.account_snapshot.position_count,
        },
        'positions_snapshot': [
            {
                'symbol': position.symbol,
                'side': position.side,
                'entry_price': position.entry_price,
                'mark_price': position.mark_price,
                'quantity': position.quantity,
                'leverage': position.leverage,
                'unrealized_pnl': position.unrealized_pnl,
                'unrealized_pnl_pct': position.unrealized_pnl_pct,
            }
            for position in record.positions_snapshot
        ],
        'execution_results': [],
    }
    for decision in record.decisions:
        item: Dict[str, Any] = {
            'symbol': decision.symbol,
            'action': decision.action,
            'reasoning': decision.reasoning,
        }
        for key in _DECISION_OPTIONAL_NUMBERS:
            value = getattr(decision, key)
            if value is not None:
                item[key] = value
        payload['decisions'].append(item)
    for result in record.execution_results:
        item = {'symbol': result.symbol, 'action': result.action, 'success': result.success}
        if result.error is not None:
            item['error'] = result.error
        payload['execution_results'].append(item)
    for key in ('input_prompt', 'decision_json', 'candidate_coins', 'execution_log', 'error_message', 'performance'):
        value = getattr(record, key)
        if value is not None:
            payload[key] = value
    return payload


def decision_from_dict(data: Any) -> DecisionRecord:
    """Build a decision record from a decoded JSON mapping."""

    data = _mapping(data, 'Decision record')
    cycle_number = data.get('cycle_number')
    if isinstance(cycle_number, bool) or not isinstance(cycle_number, int):
        raise CorruptRecord(f'Invalid cycle_number: {cycle_number!r}')
    success = data.get('success')
    try:
        return DecisionRecord(
            timestamp=parse_timestamp(data.get('timestamp')),
            cycle_number=cycle_number,
            trader_id=str(data.get('trader_id') or ''),
            success=True if success is None else bool(success),
            account_snapshot=_decode_account(_mapping(data.get('account_snapshot') or {}, 'account_snapshot')),
            positions_snapshot=_list_of(data, 'positions_snapshot', _decode_position),
            decisions=_list_of(data, 'decisions', _decode_decision),
            execution_results=_list_of(data, 'execution_results', _decode_execution_result),
            cot_trace=str(data.get('cot_trace') or ''),
            input_prompt=data.get('input_prompt'),
            decision_json=data.get('decision_json'),
            candidate_coins=data.get('candidate_coins'),
            execution_log=data.get('execution_log'),
            error_message=data.get('error_message'),
            performance=data.get('performance'),
        )
    except (TypeError, ValueError) as error:
        raise CorruptRecord(f'Malformed decision record for cycle {cycle_number}: {error}') from error


def encode_decision(record: DecisionRecord) -> str:
    return json.dumps(decision_to_dict(record), ensure_ascii=False)


def decode_decision(payload: str | bytes) -> DecisionRecord:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as error:
        raise CorruptRecord(f'Decision payload is not valid JSON: {error}') from error
    return decision_from_dict(data)


def closed_position_to_dict(position: ClosedPosition) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        'id': position.id,
        'trader_id': position.trader_id,
        'cycle_number': position.cycle_number,
        'timestamp': format_timestamp(position.close_time),
        'symbol': position.symbol,
        'side': position.side,
        'action': position.action,
        'open_time': format_timestamp(position.open_time),
        'close_time': format_timestamp(position.close_time),
        'entry_price': position.entry_price,
        'exit_price': position.exit_price,
        'quantity': position.quantity,
        'leverage': position.leverage,
        'pnl': position.pnl,
        'pnl_pct': position.pnl_pct,
        'holding_time_minutes': position.holding_time_minutes,
        'low_confidence': position.low_confidence,
    }
    if position.reasoning is not None:
        payload['reasoning'] = position.reasoning
    return payload


def closed_position_from_dict(data: Any) -> ClosedPosition:
    data = _mapping(data, 'Closed position')
    for key in ('id', 'cycle_number'):
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise CorruptRecord(f'Invalid {key}: {value!r}')
    side = data.get('side')
    if side not in ('long', 'short'):
        raise CorruptRecord(f'Invalid side: {side!r}')
    close_time = parse_timestamp(data.get('close_time') or data.get('timestamp'))
    return ClosedPosition(
        id=data['id'],
        trader_id=str(data.get('trader_id') or ''),
        cycle_number=data['cycle_number'],
        symbol=str(data.get('symbol', '')),
        side=side,
        action=str(data.get('action') or f'close_{side}'),
        open_time=parse_timestamp(data.get('open_time')),
        close_time=close_time,
        entry_price=_number(data, 'entry_price'),
        exit_price=_number(data, 'exit_price'),
        quantity=_number(data, 'quantity'),
        leverage=_number(data, 'leverage', 1.0),
        pnl=_number(data, 'pnl'),
        pnl_pct=_number(data, 'pnl_pct'),
        holding_time_minutes=_number(data, 'holding_time_minutes'),
        reasoning=data.get('reasoning'),
        low_confidence=bool(data.get('low_confidence', False)),
    )


def encode_closed_position(position: ClosedPosition) -> str:
    return json.dumps(closed_position_to_dict(position), ensure_ascii=False)


def decode_closed_position(payload: str | bytes) -> ClosedPosition:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as error:
        raise CorruptRecord(f'Closed position payload is not valid JSON: {error}') from error
    return closed_position_from_dict(data)


__all__ = [
    'closed_position_from_dict',
    'closed_position_to_dict',
    'decision_from_dict',
    'decision_to_dict',
    'decode_closed_position',
    'decode_decision',
    'encode_closed_position',
    'encode_decision',
    'format_timestamp',
    'parse_timestamp',
]
