"""Stores: cooldown tracking, signals, execution log."""

from signal_trader.store.cooldown import CooldownStore, InMemoryCooldownStore, SqliteCooldownStore
from signal_trader.store.signals import SignalStore, DUPLICATE
from signal_trader.store.executions import ExecutionLog, AttemptRecord

__all__ = [
    "CooldownStore",
    "InMemoryCooldownStore",
    "SqliteCooldownStore",
    "SignalStore",
    "DUPLICATE",
    "ExecutionLog",
    "AttemptRecord",
]
