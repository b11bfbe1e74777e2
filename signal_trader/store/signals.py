"""
Signal store: persisted signals with a UNIQUE (symbol, timeframe, direction, bar_time)
constraint. The constraint, not an in-process lock, keeps concurrent or repeated
scans from recording the same bar twice.
"""

from __future__ import annotations
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from signal_trader.core.types import (
    Direction,
    Grade,
    PersistedSignal,
    Result,
    SignalCandidate,
    SignalStatus,
)
from signal_trader.store.db import SqliteDB

logger = logging.getLogger("signal_trader.store.signals")

DUPLICATE = "DUPLICATE"
NOT_FOUND = "NOT_FOUND"
INVALID_TRANSITION = "INVALID_TRANSITION"


def _ts(dt: datetime) -> float:
    return dt.timestamp()


def _dt(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class SignalStore(SqliteDB):
    """Append-only signal table; only the status column ever changes (active -> executed|expired)."""

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS signals (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          symbol TEXT NOT NULL,
          timeframe TEXT NOT NULL,
          direction TEXT NOT NULL,
          bar_time REAL NOT NULL,
          entry_price REAL NOT NULL,
          stop_loss REAL NOT NULL,
          take_profit REAL NOT NULL,
          confidence REAL NOT NULL,
          grade TEXT NOT NULL,
          risk_reward REAL NOT NULL,
          created_at REAL NOT NULL,
          expires_at REAL NOT NULL,
          status TEXT NOT NULL DEFAULT 'active',
          primary_conditions TEXT,
          optional_confirmations TEXT,
          indicators TEXT,
          UNIQUE (symbol, timeframe, direction, bar_time)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_signals_status ON signals(status)",
    )

    def __init__(self, path: Union[str, Path]):
        super().__init__(path)

    def insert(self, candidate: SignalCandidate) -> Result[PersistedSignal]:
        """Persist a candidate. A duplicate key yields Result.failure(DUPLICATE), not an exception."""
        try:
            with self._con() as con:
                cur = con.execute(
                    """
                    INSERT INTO signals (
                      symbol, timeframe, direction, bar_time, entry_price, stop_loss, take_profit,
                      confidence, grade, risk_reward, created_at, expires_at, status,
                      primary_conditions, optional_confirmations, indicators
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        candidate.symbol,
                        candidate.timeframe,
                        candidate.direction.value,
                        _ts(candidate.bar_time),
                        candidate.entry_price,
                        candidate.stop_loss,
                        candidate.take_profit,
                        candidate.confidence,
                        candidate.grade.value,
                        candidate.risk_reward,
                        _ts(candidate.created_at),
                        _ts(candidate.expires_at),
                        SignalStatus.ACTIVE.value,
                        json.dumps(candidate.primary_conditions),
                        json.dumps(candidate.optional_confirmations),
                        json.dumps(candidate.indicators),
                    ),
                )
                signal_id = cur.lastrowid
        except sqlite3.IntegrityError:
            logger.debug("Signal already recorded: %s", candidate.unique_key)
            return Result.failure(
                DUPLICATE,
                f"{candidate.symbol} {candidate.timeframe} {candidate.direction.value} "
                f"@ {candidate.bar_time.isoformat()} already recorded",
            )
        return Result.success(PersistedSignal(id=signal_id, candidate=candidate))

    def get(self, signal_id: int) -> Optional[PersistedSignal]:
        with self._con() as con:
            row = con.execute("SELECT * FROM signals WHERE id=?", (signal_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_active(self, symbol: Optional[str] = None) -> List[PersistedSignal]:
        query = "SELECT * FROM signals WHERE status=?"
        params: list = [SignalStatus.ACTIVE.value]
        if symbol:
            query += " AND symbol=?"
            params.append(symbol)
        with self._con() as con:
            rows = con.execute(query + " ORDER BY id", params).fetchall()
        return [self._from_row(r) for r in rows]

    def mark_executed(self, signal_id: int) -> Result[None]:
        return self._transition(signal_id, SignalStatus.EXECUTED)

    def mark_expired(self, signal_id: int) -> Result[None]:
        return self._transition(signal_id, SignalStatus.EXPIRED)

    def expire_stale(self, now: datetime) -> int:
        """Move active signals past their expiry to expired. Returns the count."""
        with self._con() as con:
            cur = con.execute(
                "UPDATE signals SET status=? WHERE status=? AND expires_at <= ?",
                (SignalStatus.EXPIRED.value, SignalStatus.ACTIVE.value, _ts(now)),
            )
            count = cur.rowcount
        if count:
            logger.info("Expired %d stale signals", count)
        return count

    def _transition(self, signal_id: int, status: SignalStatus) -> Result[None]:
        with self._con() as con:
            cur = con.execute(
                "UPDATE signals SET status=? WHERE id=? AND status=?",
                (status.value, signal_id, SignalStatus.ACTIVE.value),
            )
            if cur.rowcount == 1:
                return Result.success(None)
            row = con.execute("SELECT status FROM signals WHERE id=?", (signal_id,)).fetchone()
        if row is None:
            return Result.failure(NOT_FOUND, f"signal {signal_id} not found")
        return Result.failure(
            INVALID_TRANSITION,
            f"signal {signal_id} is {row['status']}, cannot become {status.value}",
        )

    @staticmethod
    def _from_row(row) -> PersistedSignal:
        candidate = SignalCandidate(
            symbol=row["symbol"],
            timeframe=row["timeframe"],
            direction=Direction(row["direction"]),
            entry_price=row["entry_price"],
            stop_loss=row["stop_loss"],
            take_profit=row["take_profit"],
            confidence=row["confidence"],
            grade=Grade(row["grade"]),
            risk_reward=row["risk_reward"],
            bar_time=_dt(row["bar_time"]),
            created_at=_dt(row["created_at"]),
            expires_at=_dt(row["expires_at"]),
            primary_conditions=json.loads(row["primary_conditions"] or "{}"),
            optional_confirmations=json.loads(row["optional_confirmations"] or "{}"),
            indicators=json.loads(row["indicators"] or "{}"),
        )
        return PersistedSignal(id=row["id"], candidate=candidate, status=SignalStatus(row["status"]))
