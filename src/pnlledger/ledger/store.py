from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import fields, replace
from typing import Dict, Iterator, Optional, Protocol, Tuple

from ..model import Position, position_key

log = logging.getLogger("pnlledger.store")


class PositionStore(Protocol):
    def load(self, trader: str, instrument: str) -> Optional[Position]: ...

    def store(self, position: Position) -> None: ...

    def positions(self) -> Iterator[Position]: ...


def load_or_default(store: PositionStore, trader: str, instrument: str, market: str = "") -> Position:
    """Return the stored position or a zero-valued one (not persisted until stored)."""
    pos = store.load(trader, instrument)
    if pos is None:
        return Position(trader=trader, instrument=instrument, market=market)
    return pos


class InMemoryPositionStore:
    """Dict-backed store; hands out copies so callers never alias stored state."""

    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], Position] = {}
        self._lock = threading.Lock()

    def load(self, trader: str, instrument: str) -> Optional[Position]:
        with self._lock:
            pos = self._data.get(position_key(trader, instrument))
            return replace(pos) if pos is not None else None

    def store(self, position: Position) -> None:
        with self._lock:
            self._data[position.key] = replace(position)

    def positions(self) -> Iterator[Position]:
        with self._lock:
            snapshot = [replace(p) for p in self._data.values()]
        return iter(snapshot)

    def __len__(self) -> int:
        return len(self._data)


_COLUMNS = [f.name for f in fields(Position)]
_KEY_COLUMNS = ("trader", "instrument", "market")

# Amounts go in as TEXT: ints are unbounded, sqlite INTEGER is 64-bit.
DDL = """
CREATE TABLE IF NOT EXISTS positions (
  trader TEXT NOT NULL,
  instrument TEXT NOT NULL,
  market TEXT,
  quantity TEXT,
  average_cost TEXT,
  realized_pnl TEXT,
  unrealized_pnl TEXT,
  total_bought TEXT,
  total_sold TEXT,
  total_fees_paid TEXT,
  trade_count TEXT,
  first_trade_at TEXT,
  last_trade_at TEXT,
  PRIMARY KEY (trader, instrument)
);
"""


class SQLitePositionStore:
    def __init__(self, path: str = "data/positions.sqlite"):
        d = os.path.dirname(path)
        if d:
            os.makedirs(d, exist_ok=True)
        self.path = path
        with sqlite3.connect(self.path) as con:
            con.execute(DDL)

    @staticmethod
    def _row_to_position(row) -> Position:
        values = dict(zip(_COLUMNS, row))
        for name in _COLUMNS:
            if name not in _KEY_COLUMNS:
                values[name] = int(values[name])
        values["market"] = values["market"] or ""
        return Position(**values)

    def load(self, trader: str, instrument: str) -> Optional[Position]:
        with sqlite3.connect(self.path) as con:
            row = con.execute(
                f"SELECT {','.join(_COLUMNS)} FROM positions WHERE trader=? AND instrument=?",
                (trader, instrument),
            ).fetchone()
        return self._row_to_position(row) if row is not None else None

    def store(self, position: Position) -> None:
        values = [
            getattr(position, name) if name in _KEY_COLUMNS else str(getattr(position, name))
            for name in _COLUMNS
        ]
        with sqlite3.connect(self.path) as con:
            con.execute(
                f"INSERT OR REPLACE INTO positions({','.join(_COLUMNS)}) VALUES ({','.join('?' * len(_COLUMNS))})",
                values,
            )
        log.debug("stored position %s/%s", position.trader, position.instrument)

    def positions(self) -> Iterator[Position]:
        with sqlite3.connect(self.path) as con:
            rows = con.execute(f"SELECT {','.join(_COLUMNS)} FROM positions").fetchall()
        return iter([self._row_to_position(r) for r in rows])
