"""
History Store for GhostRegime.

Holds every committed row as an immutable, date-ordered tuple plus a
date index. The pair is swapped as a single object on commit, so
readers never lock: they take a reference to the current state and work
on it while a writer builds the next one.

The store is initialized from the database at startup and only
``commit`` changes it afterwards.

Classes:
    HistoryStore: Append-only daily history with range and point lookups

Example:
    >>> store = HistoryStore(DatabaseStorage("data/ghostregime.db"))
    >>> store.history("2024-01-02", "2024-01-04")
    [GhostRegimeRow(date='2024-01-02', ...), ...]
"""

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging
import threading

from src.data_pipeline.storage import DatabaseStorage
from src.errors import DateNotFoundError
from src.snapshot.models import GhostRegimeRow, parse_iso_date

logger = logging.getLogger(__name__)

DateArg = Union[str, date, None]


@dataclass(frozen=True)
class _HistoryState:
    rows: Tuple[GhostRegimeRow, ...] = ()
    dates: Tuple[str, ...] = ()
    index: Optional[Dict[str, int]] = None

    @classmethod
    def build(cls, rows: Iterable[GhostRegimeRow]) -> "_HistoryState":
        by_date = {row.date: row for row in rows}
        ordered = tuple(by_date[d] for d in sorted(by_date))
        dates = tuple(r.date for r in ordered)
        return cls(ordered, dates, {d: i for i, d in enumerate(dates)})


def _iso(value: DateArg, param: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value.isoformat()
    return parse_iso_date(value, param).isoformat()


class HistoryStore:
    """Append-only daily history backed by ``DatabaseStorage``.

    Attributes:
        storage: Persistence backend
    """

    def __init__(self, storage: DatabaseStorage):
        self.storage = storage
        self._write_lock = threading.Lock()
        self._state = _HistoryState.build(())
        self.reload()

    def reload(self) -> None:
        """Rebuild the in-memory state from the database."""
        rows = []
        for data in self.storage.load_rows():
            try:
                rows.append(GhostRegimeRow.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping unreadable stored row {data.get('date')}: {e}")
        self._state = _HistoryState.build(rows)
        logger.info(f"History loaded: {len(self._state.rows)} rows")

    def __len__(self) -> int:
        return len(self._state.rows)

    @property
    def is_empty(self) -> bool:
        return not self._state.rows

    @property
    def latest(self) -> Optional[GhostRegimeRow]:
        rows = self._state.rows
        return rows[-1] if rows else None

    @property
    def dates(self) -> Tuple[str, ...]:
        return self._state.dates

    def get(self, day: DateArg) -> Optional[GhostRegimeRow]:
        state = self._state
        key = _iso(day, "date")
        pos = state.index.get(key) if key and state.index else None
        return state.rows[pos] if pos is not None else None

    def previous(self, day: DateArg) -> Optional[GhostRegimeRow]:
        """Latest row strictly before ``day``."""
        state = self._state
        pos = bisect_left(state.dates, _iso(day, "date"))
        return state.rows[pos - 1] if pos > 0 else None

    def before(self, day: DateArg, limit: int = 10) -> List[GhostRegimeRow]:
        """Up to ``limit`` rows strictly before ``day``, ascending."""
        state = self._state
        pos = bisect_left(state.dates, _iso(day, "date"))
        return list(state.rows[max(0, pos - limit):pos])

    def history(self, start_date: DateArg = None, end_date: DateArg = None) -> List[GhostRegimeRow]:
        """Rows between the inclusive bounds, ascending.

        Raises:
            InvalidInputError: If a bound is not a valid YYYY-MM-DD date
        """
        start = _iso(start_date, "startDate")
        end = _iso(end_date, "endDate")
        state = self._state

        lo = bisect_left(state.dates, start) if start else 0
        hi = bisect_right(state.dates, end) if end else len(state.dates)
        return list(state.rows[lo:hi])

    def explain(self, day: Optional[str]) -> GhostRegimeRow:
        """Row for ``day`` including its debug vote breakdown.

        Raises:
            InvalidInputError: Missing or malformed date
            DateNotFoundError: No row for that date
        """
        if isinstance(day, date):
            key = day.isoformat()
        else:
            key = parse_iso_date(day, "date").isoformat()
        row = self.get(key)
        if row is None:
            raise DateNotFoundError(key, list(self._state.dates[:10]))
        return row

    def commit(self, row: GhostRegimeRow) -> None:
        """Persist ``row`` and publish it, replacing any row for the same date."""
        with self._write_lock:
            self.storage.save_row(row.to_dict(include_debug=True))
            state = self._state
            rows = [r for r in state.rows if r.date != row.date]
            rows.append(row)
            self._state = _HistoryState.build(rows)
        logger.info(f"Committed {row.date}: {row.regime} ({row.risk_regime})")

    def import_rows(self, rows: Iterable[GhostRegimeRow], overwrite: bool = False) -> int:
        """Bulk-load rows, skipping dates already present unless ``overwrite``."""
        with self._write_lock:
            state = self._state
            incoming = [
                r for r in rows
                if overwrite or not (state.index and r.date in state.index)
            ]
            if not incoming:
                return 0
            self.storage.save_rows(r.to_dict(include_debug=True) for r in incoming)
            merged = {r.date: r for r in state.rows}
            merged.update({r.date: r for r in incoming})
            self._state = _HistoryState.build(merged.values())
        logger.info(f"Imported {len(incoming)} history rows")
        return len(incoming)
