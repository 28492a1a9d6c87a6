"""Exception hierarchy shared by the journal components."""

from __future__ import annotations


class JournalError(Exception):
    """Base class for decision journal failures."""

    kind = 'journal_error'


class CorruptRecord(JournalError):
    """A stored unit could not be decoded into a well-formed record."""

    kind = 'corrupt_record'


class DuplicateCycle(JournalError):
    """An append targeted a cycle number that is already used."""

    kind = 'duplicate_cycle'

    def __init__(self, trader_id: str, cycle_number: int, latest: int | None = None) -> None:
        self.trader_id = trader_id
        self.cycle_number = cycle_number
        self.latest = latest
        if latest is not None and cycle_number < latest:
            message = (
                f'Cycle {cycle_number} for trader {trader_id} is behind the latest '
                f'recorded cycle {latest}'
            )
        else:
            message = f'Cycle {cycle_number} for trader {trader_id} is already recorded'
        super().__init__(message)


class UnmatchedClose(JournalError):
    """A close action has no discoverable open event.

    Raised and handled inside the indexer, which still emits a
    low-confidence closed position.
    """

    kind = 'unmatched_close'

    def __init__(self, symbol: str, side: str, cycle_number: int) -> None:
        self.symbol = symbol
        self.side = side
        self.cycle_number = cycle_number
        super().__init__(f'No open event found for {symbol} {side} closed in cycle {cycle_number}')


class InvalidPagination(JournalError, ValueError):
    kind = 'invalid_pagination'


class UnknownTrader(JournalError, KeyError):
    kind = 'unknown_trader'

    def __init__(self, trader_id: str) -> None:
        self.trader_id = trader_id
        super().__init__(f'Trader {trader_id} not found')

    def __str__(self) -> str:
        return f'Trader {self.trader_id} not found'


__all__ = [
    'CorruptRecord',
    'DuplicateCycle',
    'InvalidPagination',
    'JournalError',
    'UnknownTrader',
    'UnmatchedClose',
]
