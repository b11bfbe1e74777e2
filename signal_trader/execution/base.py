"""Abstract exchange interface: market data, instrument rules, orders, TP/SL."""

from __future__ import annotations
import functools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

import pandas as pd

from signal_trader.core.errors import ExchangeRejection, RejectCode
from signal_trader.core.types import Candle, InstrumentRules, OrderSide, OrderType, Position

logger = logging.getLogger("signal_trader.execution")

KLINE_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Candle records -> OHLCV DataFrame in KLINE_COLUMNS order, times as UTC."""
    rows = [(c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in candles]
    df = pd.DataFrame(rows, columns=KLINE_COLUMNS)
    df["time"] = pd.to_datetime(df["time"], utc=True)
    return df


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry rate-limited calls (HTTP 429/418, exchange rate-limit codes) with backoff."""
    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except ExchangeRejection as e:
                    if e.code is RejectCode.RATE_LIMITED and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise
        return wrapped
    return decorator


@dataclass(frozen=True)
class OrderRequest:
    """One order submission as sent to the exchange."""
    symbol: str
    side: OrderSide
    quantity: float
    order_type: OrderType = OrderType.MARKET
    price: Optional[float] = None
    reduce_only: bool = False
    time_in_force: Optional[str] = None   # None: exchange default
    client_order_id: Optional[str] = None


@dataclass
class OrderAck:
    """Exchange acknowledgment of an accepted order."""
    order_id: str
    quantity: float
    avg_price: Optional[float] = None
    client_order_id: Optional[str] = None


class ExchangeClient(ABC):
    """
    Exchange adapter. Rejections raise ExchangeRejection with a mapped RejectCode;
    transport failures raise ExecutionError; missing credentials raise InfrastructureError.
    """

    name = "exchange"

    @abstractmethod
    def get_klines(self, symbol: str, timeframe: str, limit: int = 300) -> pd.DataFrame:
        """
        OHLCV DataFrame with columns time (UTC), open, high, low, close, volume,
        ascending by time. Raises DataError on fetch failure.
        """

    @abstractmethod
    def get_instrument_rules(self, symbol: str) -> InstrumentRules:
        """Trading constraints for symbol (may be cached briefly)."""

    @abstractmethod
    def get_last_price(self, symbol: str) -> float:
        """Last traded price."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: float) -> None:
        """Set leverage for symbol. An unchanged leverage is not an error."""

    @abstractmethod
    def place_order(self, request: OrderRequest) -> OrderAck:
        """Submit an order. Raises ExchangeRejection if refused."""

    @abstractmethod
    def set_trading_stop(
        self,
        symbol: str,
        side: OrderSide,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> None:
        """Attach stop-loss / take-profit to the open position opened with `side`."""

    @abstractmethod
    def get_open_position(self, symbol: str) -> Optional[Position]:
        """Current open position for symbol, or None."""

    def close(self) -> None:
        """Release network resources."""
