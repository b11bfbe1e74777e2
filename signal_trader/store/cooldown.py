"""
Cooldown store: last emission time per (symbol, direction).

`try_acquire` is the only mutation and is atomic per key: it checks the window
and records the new emission in one step, so two concurrent evaluations of the
same key can never both pass.
"""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple, Union
from pathlib import Path

from signal_trader.core.types import Direction
from signal_trader.store.db import SqliteDB


class CooldownStore(ABC):
    """Tracks the last accepted signal time for each (symbol, direction)."""

    @abstractmethod
    def last_emitted(self, symbol: str, direction: Direction) -> Optional[datetime]:
        """Last accepted emission for the key, or None."""

    @abstractmethod
    def try_acquire(self, symbol: str, direction: Direction, now: datetime, window: timedelta) -> bool:
        """
        If the key has not emitted within `window` before `now`, record `now`
        and return True. Otherwise leave the entry untouched and return False.
        """

    def in_cooldown(self, symbol: str, direction: Direction, now: datetime, window: timedelta) -> bool:
        last = self.last_emitted(symbol, direction)
        return last is not None and now - last < window


class InMemoryCooldownStore(CooldownStore):
    """Process-lifetime store for single-instance deployments."""

    def __init__(self):
        self._entries: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def last_emitted(self, symbol: str, direction: Direction) -> Optional[datetime]:
        with self._lock:
            return self._entries.get((symbol, direction.value))

    def try_acquire(self, symbol: str, direction: Direction, now: datetime, window: timedelta) -> bool:
        key = (symbol, direction.value)
        with self._lock:
            last = self._entries.get(key)
            if last is not None and now - last < window:
                return False
            self._entries[key] = now
            return True


class SqliteCooldownStore(SqliteDB, CooldownStore):
    """Durable store for multi-instance deployments sharing one database file."""

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS cooldowns (
          symbol TEXT NOT NULL,
          direction TEXT NOT NULL,
          last_at REAL NOT NULL,
          PRIMARY KEY (symbol, direction)
        )
        """,
    )

    def __init__(self, path: Union[str, Path]):
        SqliteDB.__init__(self, path)

    def last_emitted(self, symbol: str, direction: Direction) -> Optional[datetime]:
        with self._con() as con:
            row = con.execute(
                "SELECT last_at FROM cooldowns WHERE symbol=? AND direction=?",
                (symbol, direction.value),
            ).fetchone()
        if row is None:
            return None
        return datetime.fromtimestamp(row["last_at"], tz=timezone.utc)

    def try_acquire(self, symbol: str, direction: Direction, now: datetime, window: timedelta) -> bool:
        now_ts = now.timestamp()
        cutoff = now_ts - window.total_seconds()
        with self._con() as con:
            cur = con.execute(
                """
                INSERT INTO cooldowns (symbol, direction, last_at) VALUES (?, ?, ?)
                ON CONFLICT(symbol, direction) DO UPDATE SET last_at = excluded.last_at
                WHERE cooldowns.last_at <= ?
                """,
                (symbol, direction.value, now_ts, cutoff),
            )
            return cur.rowcount == 1
