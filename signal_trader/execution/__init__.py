"""Execution: exchange abstraction, Bybit/Binance clients, order state machine."""

from signal_trader.execution.base import ExchangeClient, OrderRequest, OrderAck, retry_on_rate_limit
from signal_trader.execution.retry import RetryStep, DEFAULT_RETRY_POLICY
from signal_trader.execution.engine import OrderExecutor, ExecutionOutcome, ExecutionStatus, OrderState
from signal_trader.execution.auto import AutoTrader, intent_from_signal

__all__ = [
    "ExchangeClient",
    "OrderRequest",
    "OrderAck",
    "retry_on_rate_limit",
    "RetryStep",
    "DEFAULT_RETRY_POLICY",
    "OrderExecutor",
    "ExecutionOutcome",
    "ExecutionStatus",
    "OrderState",
    "AutoTrader",
    "intent_from_signal",
]
