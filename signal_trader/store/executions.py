"""
Execution log: append-only record of every order attempt plus the executed
orders table whose status moves open -> closed on reconciliation.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from signal_trader.core.types import ExecutedOrder, OrderSide, OrderStatus
from signal_trader.store.db import SqliteDB

logger = logging.getLogger("signal_trader.store.executions")


@dataclass
class AttemptRecord:
    """One row of the attempt log."""
    symbol: str
    side: str
    stage: str              # sizing | leverage | submit | tpsl
    outcome: str            # ok | rejected | invalid | degraded | pending
    attempt: int = 0
    quantity: Optional[float] = None
    price: Optional[float] = None
    leverage: Optional[float] = None
    order_type: Optional[str] = None
    reduce_only: Optional[bool] = None
    order_id: Optional[str] = None
    code: str = ""
    message: str = ""
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None


class ExecutionLog(SqliteDB):
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS execution_attempts (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          created_at REAL NOT NULL,
          idempotency_key TEXT,
          symbol TEXT NOT NULL,
          side TEXT NOT NULL,
          stage TEXT NOT NULL,
          outcome TEXT NOT NULL,
          attempt INTEGER NOT NULL,
          quantity REAL,
          price REAL,
          leverage REAL,
          order_type TEXT,
          reduce_only INTEGER,
          order_id TEXT,
          code TEXT,
          message TEXT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS orders (
          order_id TEXT PRIMARY KEY,
          symbol TEXT NOT NULL,
          side TEXT NOT NULL,
          quantity REAL NOT NULL,
          entry_price REAL NOT NULL,
          leverage REAL NOT NULL,
          stop_loss REAL,
          take_profit REAL,
          status TEXT NOT NULL,
          protected INTEGER NOT NULL,
          created_at REAL NOT NULL,
          closed_at REAL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
    )

    def __init__(self, path: Union[str, Path]):
        super().__init__(path)

    def record_attempt(self, rec: AttemptRecord) -> None:
        created = rec.created_at or datetime.now(timezone.utc)
        with self._con() as con:
            con.execute(
                """
                INSERT INTO execution_attempts (
                  created_at, idempotency_key, symbol, side, stage, outcome, attempt,
                  quantity, price, leverage, order_type, reduce_only, order_id, code, message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    created.timestamp(), rec.idempotency_key, rec.symbol, rec.side, rec.stage,
                    rec.outcome, rec.attempt, rec.quantity, rec.price, rec.leverage,
                    rec.order_type, None if rec.reduce_only is None else int(rec.reduce_only),
                    rec.order_id, rec.code, rec.message,
                ),
            )

    def attempts(self, symbol: Optional[str] = None) -> List[AttemptRecord]:
        query = "SELECT * FROM execution_attempts"
        params: list = []
        if symbol:
            query += " WHERE symbol=?"
            params.append(symbol)
        with self._con() as con:
            rows = con.execute(query + " ORDER BY id", params).fetchall()
        return [
            AttemptRecord(
                symbol=r["symbol"],
                side=r["side"],
                stage=r["stage"],
                outcome=r["outcome"],
                attempt=r["attempt"],
                quantity=r["quantity"],
                price=r["price"],
                leverage=r["leverage"],
                order_type=r["order_type"],
                reduce_only=None if r["reduce_only"] is None else bool(r["reduce_only"]),
                order_id=r["order_id"],
                code=r["code"] or "",
                message=r["message"] or "",
                idempotency_key=r["idempotency_key"],
                created_at=datetime.fromtimestamp(r["created_at"], tz=timezone.utc),
            )
            for r in rows
        ]

    def record_order(self, order: ExecutedOrder) -> None:
        created = order.created_at or datetime.now(timezone.utc)
        with self._con() as con:
            con.execute(
                """
                INSERT INTO orders (
                  order_id, symbol, side, quantity, entry_price, leverage, stop_loss,
                  take_profit, status, protected, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.order_id, order.symbol, order.side.value, order.quantity,
                    order.entry_price, order.leverage, order.stop_loss, order.take_profit,
                    order.status.value, int(order.protected), created.timestamp(),
                ),
            )

    def open_orders(self, symbol: Optional[str] = None) -> List[ExecutedOrder]:
        query = "SELECT * FROM orders WHERE status=?"
        params: list = [OrderStatus.OPEN.value]
        if symbol:
            query += " AND symbol=?"
            params.append(symbol)
        with self._con() as con:
            rows = con.execute(query + " ORDER BY created_at", params).fetchall()
        return [
            ExecutedOrder(
                order_id=r["order_id"],
                symbol=r["symbol"],
                side=OrderSide(r["side"]),
                quantity=r["quantity"],
                entry_price=r["entry_price"],
                leverage=r["leverage"],
                stop_loss=r["stop_loss"],
                take_profit=r["take_profit"],
                status=OrderStatus(r["status"]),
                created_at=datetime.fromtimestamp(r["created_at"], tz=timezone.utc),
                protected=bool(r["protected"]),
            )
            for r in rows
        ]

    def mark_closed(self, order_id: str, now: Optional[datetime] = None) -> bool:
        """open -> closed. Returns False if the order was not open."""
        now = now or datetime.now(timezone.utc)
        with self._con() as con:
            cur = con.execute(
                "UPDATE orders SET status=?, closed_at=? WHERE order_id=? AND status=?",
                (OrderStatus.CLOSED.value, now.timestamp(), order_id, OrderStatus.OPEN.value),
            )
            return cur.rowcount == 1
