"""Core: config, types, errors, logging."""

from signal_trader.core.config import load_config, Config, RuleConfig
from signal_trader.core.types import (
    Candle,
    Direction,
    Grade,
    OrderSide,
    Result,
    IndicatorSnapshot,
    SignalCandidate,
    PersistedSignal,
    InstrumentRules,
    OrderIntent,
    ExecutedOrder,
    Position,
)
from signal_trader.core.errors import (
    TradingError,
    DataError,
    ValidationError,
    ExecutionError,
    InfrastructureError,
    ExchangeRejection,
    RejectCode,
)
from signal_trader.core.logger import setup_logging

__all__ = [
    "load_config",
    "Config",
    "RuleConfig",
    "Candle",
    "Direction",
    "Grade",
    "OrderSide",
    "Result",
    "IndicatorSnapshot",
    "SignalCandidate",
    "PersistedSignal",
    "InstrumentRules",
    "OrderIntent",
    "ExecutedOrder",
    "Position",
    "TradingError",
    "DataError",
    "ValidationError",
    "ExecutionError",
    "InfrastructureError",
    "ExchangeRejection",
    "RejectCode",
    "setup_logging",
]
