"""Append-only, per-trader store of decision cycles."""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..database import DatabaseManager
from ..database.models import (
    AccountSnapshot,
    Decision,
    DecisionCycle,
    DecisionRecord,
    ExecutionResult,
    PositionSnapshot,
)
from ..errors import CorruptRecord, DuplicateCycle
from .codec import decode_decision, encode_decision


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
# decision_<date>_<time>_cycle<N>.json, one file per cycle and trader directory.
LEGACY_FILE_PATTERN = re.compile(r'^decision_.*_cycle(\d+)\.json$')


def legacy_log_files(log_dir: str | Path) -> List[Path]:
    """Return the per-cycle decision files of ``log_dir`` in cycle order."""

    directory = Path(log_dir)
    if not directory.is_dir():
        return []
    numbered = []
    for path in directory.glob('decision_*.json'):
        match = LEGACY_FILE_PATTERN.match(path.name)
        if match is None:
            logger.warning('Ignoring %s: no cycle number in file name', path)
            continue
        numbered.append((int(match.group(1)), path.name, path))
    return [path for _, _, path in sorted(numbered)]


class DecisionLogStore:
    """Durable decision log for a single trader.

    ``append`` is the only write path. Each record is committed in its own
    transaction, so readers see either the previous state or the complete new
    record. Appends from the same process are serialized by a lock; cycle
    numbers must be strictly increasing.
    """

    def __init__(self, database: DatabaseManager, trader_id: str) -> None:
        self._database = database
        self._trader_id = trader_id
        self._write_lock = threading.Lock()

    @property
    def trader_id(self) -> str:
        return self._trader_id

    def append(self, record: DecisionRecord) -> DecisionRecord:
        """Persist ``record`` as a new cycle.

        Raises :class:`DuplicateCycle` when the cycle number is already used or
        is not greater than the latest recorded cycle.
        """

        if record.trader_id and record.trader_id != self._trader_id:
            raise ValueError(
                f'Record for trader {record.trader_id} appended to log of {self._trader_id}'
            )
        record.trader_id = self._trader_id
        payload = encode_decision(record)
        with self._write_lock:
            with self._database.session() as session:
                latest = session.execute(
                    select(func.max(DecisionCycle.cycle_number)).where(
                        DecisionCycle.trader_id == self._trader_id
                    )
                ).scalar_one_or_none()
                if latest is not None and record.cycle_number <= latest:
                    raise DuplicateCycle(self._trader_id, record.cycle_number, latest)
                session.add(
                    DecisionCycle(
                        trader_id=self._trader_id,
                        cycle_number=record.cycle_number,
                        timestamp=record.timestamp,
                        success=record.success,
                        payload=payload,
                    )
                )
                try:
                    session.flush()
                except IntegrityError as error:
                    raise DuplicateCycle(self._trader_id, record.cycle_number) from error
        logger.info(
            'Decision cycle %s recorded for %s (success=%s)',
            record.cycle_number,
            self._trader_id,
            record.success,
        )
        return record

    def record_cycle(
        self,
        *,
        account: AccountSnapshot,
        positions: Sequence[PositionSnapshot],
        decisions: Sequence[Decision],
        execution_results: Sequence[ExecutionResult],
        cot_trace: str = '',
        timestamp: Optional[datetime] = None,
        **extra: object,
    ) -> DecisionRecord:
        """Build and append the record for the next cycle.

        The cycle succeeds when there was nothing to execute or every
        execution succeeded.
        """

        results = list(execution_results)
        record = DecisionRecord(
            timestamp=timestamp or datetime.now(timezone.utc),
            cycle_number=self.next_cycle_number(),
            trader_id=self._trader_id,
            success=all(result.success for result in results),
            account_snapshot=account,
            positions_snapshot=list(positions),
            decisions=list(decisions),
            execution_results=results,
            cot_trace=cot_trace,
            **extra,
        )
        return self.append(record)

    def import_legacy_logs(self, log_dir: str | Path) -> Tuple[int, int]:
        """Append the JSON files of a per-cycle log directory.

        Files are appended in cycle order. Unreadable files, malformed
        records, records of another trader and cycles already present are
        skipped with a log line. Returns ``(imported, skipped)``.
        """

        imported = 0
        skipped = 0
        for path in legacy_log_files(log_dir):
            try:
                record = decode_decision(path.read_text(encoding='utf-8'))
                self.append(record)
            except DuplicateCycle as error:
                logger.info('Skipping %s: %s', path.name, error)
                skipped += 1
            except (OSError, CorruptRecord, ValueError) as error:
                logger.warning('Skipping unreadable decision file %s: %s', path, error)
                skipped += 1
            else:
                imported += 1
        logger.info(
            'Imported %s decision file(s) for %s from %s (%s skipped)',
            imported,
            self._trader_id,
            log_dir,
            skipped,
        )
        return imported, skipped

    def latest_cycle_number(self) -> int:
        """Return the highest recorded cycle number, 0 for an empty log."""

        with self._database.session() as session:
            latest = session.execute(
                select(func.max(DecisionCycle.cycle_number)).where(
                    DecisionCycle.trader_id == self._trader_id
                )
            ).scalar_one_or_none()
        return latest or 0

    def next_cycle_number(self) -> int:
        return self.latest_cycle_number() + 1

    def count(self) -> int:
        with self._database.session() as session:
            return session.execute(
                select(func.count()).select_from(DecisionCycle).where(
                    DecisionCycle.trader_id == self._trader_id
                )
            ).scalar_one()

    def get_by_cycle(self, cycle_number: int) -> Optional[DecisionRecord]:
        """Return the record for ``cycle_number`` or ``None`` when absent."""

        with self._database.session() as session:
            row = session.get(DecisionCycle, (self._trader_id, cycle_number))
            payload = row.payload if row is not None else None
        if payload is None:
            return None
        return decode_decision(payload)

    def get_recent(self, limit: int = 100) -> List[DecisionRecord]:
        """Return up to ``limit`` records, most recent first."""

        return self.get_page(0, limit)

    def get_page(self, offset: int, limit: int) -> List[DecisionRecord]:
        """Return a newest-first slice of the log."""

        if limit <= 0:
            return []
        stmt = (
            select(DecisionCycle.cycle_number, DecisionCycle.payload)
            .where(DecisionCycle.trader_id == self._trader_id)
            .order_by(DecisionCycle.cycle_number.desc())
            .offset(max(offset, 0))
            .limit(limit)
        )
        with self._database.session() as session:
            rows = session.execute(stmt).all()
        return list(self._decode_rows(rows))

    def list_all(self, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[DecisionRecord]:
        """Lazily yield every record in ascending cycle order."""

        return self.list_since(0, batch_size=batch_size)

    def list_since(self, cycle_number: int, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[DecisionRecord]:
        """Lazily yield records with a cycle number above ``cycle_number``."""

        for _, record in self.scan_since(cycle_number, batch_size=batch_size):
            if record is not None:
                yield record

    def scan_since(
        self,
        cycle_number: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> Iterator[Tuple[int, Optional[DecisionRecord]]]:
        """Yield ``(cycle_number, record)`` for every row above ``cycle_number``.

        ``record`` is ``None`` for a row that cannot be decoded, so callers
        that keep a watermark can move past it. Rows are read in keyset
        batches, each in its own short session, so a long scan never holds a
        transaction open against the writer.
        """

        cursor = cycle_number
        while True:
            stmt = (
                select(DecisionCycle.cycle_number, DecisionCycle.payload)
                .where(
                    DecisionCycle.trader_id == self._trader_id,
                    DecisionCycle.cycle_number > cursor,
                )
                .order_by(DecisionCycle.cycle_number.asc())
                .limit(batch_size)
            )
            with self._database.session() as session:
                rows = session.execute(stmt).all()
            if not rows:
                return
            cursor = rows[-1].cycle_number
            for row in rows:
                yield row.cycle_number, self._decode_row(row)
            if len(rows) < batch_size:
                return

    def _decode_rows(self, rows: Iterable) -> Iterator[DecisionRecord]:
        for row in rows:
            record = self._decode_row(row)
            if record is not None:
                yield record

    def _decode_row(self, row) -> Optional[DecisionRecord]:
        try:
            return decode_decision(row.payload)
        except CorruptRecord as error:
            logger.warning(
                'Skipping corrupt decision cycle %s for %s: %s',
                row.cycle_number,
                self._trader_id,
                error,
            )
            return None


__all__ = ['DecisionLogStore', 'legacy_log_files']
