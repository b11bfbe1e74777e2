"""Utils: timeframes, exchange filters."""

from signal_trader.utils.timeframes import timeframe_minutes, timeframe_delta, bybit_interval
from signal_trader.utils.exchange_filters import (
    round_quantity,
    ceil_quantity,
    format_qty,
    round_price,
    parse_bybit_instrument,
    parse_binance_symbol,
)

__all__ = [
    "timeframe_minutes",
    "timeframe_delta",
    "bybit_interval",
    "round_quantity",
    "ceil_quantity",
    "format_qty",
    "round_price",
    "parse_bybit_instrument",
    "parse_binance_symbol",
]
