"""Open-interest history cache.

Keeps a short, time-ordered list of OI samples per symbol in a single JSON
file so OI rate-of-change features survive restarts. The whole map is
rewritten on every mutation; writes are infrequent (one sample per symbol per
polling interval).
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DEFAULT_RETENTION_HOURS = 72.0
# Samples closer together than this are coalesced into the latest one.
COALESCE_WINDOW_MS = HOUR_MS
# A baseline further than this from the requested time is not trusted.
MATCH_TOLERANCE_MS = 2 * HOUR_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class OIRecord:
    timestamp: int
    oi_value: float
    oi_quantity: float


class OICache:
    """File-backed OI sample store with retention and nearest-time lookup."""

    def __init__(
        self,
        cache_path: str | Path,
        *,
        retention_hours: float = DEFAULT_RETENTION_HOURS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._path = Path(cache_path)
        self._retention_ms = int(retention_hours * HOUR_MS)
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Dict[str, List[OIRecord]] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            logger.info('OI cache %s not found; starting empty', self._path)
            return
        try:
            raw = json.loads(self._path.read_text(encoding='utf-8'))
            self._cache = {
                symbol: sorted(
                    (
                        OIRecord(
                            timestamp=int(item['timestamp']),
                            oi_value=float(item['oi_value']),
                            oi_quantity=float(item['oi_quantity']),
                        )
                        for item in items
                    ),
                    key=lambda record: record.timestamp,
                )
                for symbol, items in raw.items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as error:
            logger.warning('Failed to load OI cache %s, starting fresh: %s', self._path, error)
            self._cache = {}
            return
        self._prune()
        logger.info('Loaded OI history for %s symbol(s) from %s', len(self._cache), self._path)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            symbol: [asdict(record) for record in records]
            for symbol, records in self._cache.items()
        }
        fd, tmp_name = tempfile.mkstemp(prefix='.oi-cache-', suffix='.json', dir=self._path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self._path)
        except OSError:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    def _prune(self) -> int:
        cutoff = self._clock() - self._retention_ms
        removed = 0
        for symbol in list(self._cache):
            records = self._cache[symbol]
            kept = [record for record in records if record.timestamp > cutoff]
            removed += len(records) - len(kept)
            if kept:
                self._cache[symbol] = kept
            else:
                del self._cache[symbol]
        if removed:
            logger.debug('Pruned %s OI record(s) older than %.0fh', removed, self._retention_ms / HOUR_MS)
        return removed

    def add_record(self, symbol: str, oi_value: float, oi_quantity: float) -> OIRecord:
        """Store a sample, coalescing it into the latest one when that is under an hour old."""

        with self._lock:
            now = self._clock()
            records = self._cache.setdefault(symbol, [])
            last = records[-1] if records else None
            if last is not None and now - last.timestamp < COALESCE_WINDOW_MS:
                last.timestamp = now
                last.oi_value = oi_value
                last.oi_quantity = oi_quantity
                record = last
            else:
                record = OIRecord(timestamp=now, oi_value=oi_value, oi_quantity=oi_quantity)
                records.append(record)
            self._prune()
            self._save()
            return record

    def calculate_change(self, symbol: str, current_value: float, hours_ago: float = 4) -> float:
        """Percent change of ``current_value`` against the sample nearest ``hours_ago``.

        Returns 0 when there is no history, when the nearest sample is more
        than two hours from the requested time, or when the baseline is 0.
        """

        with self._lock:
            records = list(self._cache.get(symbol, ()))
            target = self._clock() - int(hours_ago * HOUR_MS)
        if not records:
            return 0.0
        closest = min(records, key=lambda record: abs(record.timestamp - target))
        if abs(closest.timestamp - target) > MATCH_TOLERANCE_MS:
            return 0.0
        if closest.oi_value == 0:
            return 0.0
        return (current_value - closest.oi_value) / closest.oi_value * 100

    def get_record_count(self, symbol: str) -> int:
        with self._lock:
            return len(self._cache.get(symbol, ()))

    def records(self, symbol: str) -> List[OIRecord]:
        with self._lock:
            return [OIRecord(**asdict(record)) for record in self._cache.get(symbol, ())]

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)


__all__ = ['DEFAULT_RETENTION_HOURS', 'OICache', 'OIRecord']
