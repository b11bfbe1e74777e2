"""Shared fixtures: fake exchange client and candle builders."""

from __future__ import annotations
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd
import pytest

from signal_trader.core.errors import DataError
from signal_trader.core.types import Candle, InstrumentRules, OrderSide, Position
from signal_trader.execution.base import ExchangeClient, OrderAck, OrderRequest, candles_to_frame

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_candles(
    closes: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    start: datetime = START,
    step: timedelta = timedelta(hours=1),
) -> pd.DataFrame:
    """OHLCV frame: open = previous close, wicks 1.0 beyond the body."""
    closes = [float(c) for c in closes]
    volumes = [float(v) for v in volumes] if volumes is not None else [1000.0] * len(closes)
    opens = [closes[0]] + closes[:-1]
    return candles_to_frame(
        Candle(start + i * step, o, max(o, c) + 1.0, min(o, c) - 1.0, c, v)
        for i, (o, c, v) in enumerate(zip(opens, closes, volumes))
    )


def golden_cross_candles(n: int = 300) -> pd.DataFrame:
    """
    Slow decline for n-1 bars (EMA21 below SMA200), then a +150 bar with
    doubled volume that lifts EMA21 above SMA200 on the last bar only.
    """
    closes = [1000.0 - 0.1 * i for i in range(n - 1)]
    closes.append(closes[-1] + 150.0)
    volumes = [1000.0] * (n - 1) + [2000.0]
    return make_candles(closes, volumes)


def death_cross_candles(n: int = 300) -> pd.DataFrame:
    closes = [1000.0 + 0.1 * i for i in range(n - 1)]
    closes.append(closes[-1] - 150.0)
    volumes = [1000.0] * (n - 1) + [2000.0]
    return make_candles(closes, volumes)


def mid_volatility_cross_candles(n: int = 300) -> pd.DataFrame:
    """
    Golden cross whose final volatility sits mid-range: 42 bars dipped by
    e^-0.2 early on put 87 of the trailing 252 volatility readings above the
    cross bar's, so HVP on the last bar is 165/252.
    """
    closes = [1000.0 - 0.1 * i for i in range(n - 1)]
    for i in range(32, 115, 2):
        closes[i] *= math.exp(-0.2)
    closes.append(closes[-1] + 150.0)
    volumes = [1000.0] * (n - 1) + [2000.0]
    return make_candles(closes, volumes)


def btc_rules(**overrides) -> InstrumentRules:
    values = dict(
        symbol="BTCUSDT",
        min_order_qty=0.001,
        qty_step=0.001,
        min_price=0.1,
        max_price=1_000_000.0,
        tick_size=0.1,
        min_notional=5.0,
        max_leverage=100.0,
        trading_enabled=True,
    )
    values.update(overrides)
    return InstrumentRules(**values)


class FakeExchange(ExchangeClient):
    """
    In-memory ExchangeClient. `order_script` holds exceptions to raise on
    successive place_order calls; once exhausted, orders are accepted.
    """

    name = "fake"

    def __init__(self):
        self.klines: Dict[tuple, object] = {}
        self.rules: Dict[str, InstrumentRules] = {}
        self.prices: Dict[str, float] = {}
        self.positions: Dict[str, Position] = {}
        self.order_script: List[Exception] = []
        self.tpsl_error: Optional[Exception] = None
        self.orders: List[OrderRequest] = []
        self.trading_stops: List[tuple] = []
        self.leverage_calls: List[tuple] = []
        self.kline_calls: List[tuple] = []

    def get_klines(self, symbol: str, timeframe: str, limit: int = 300) -> pd.DataFrame:
        self.kline_calls.append((symbol, timeframe, limit))
        data = self.klines.get((symbol, timeframe))
        if isinstance(data, Exception):
            raise data
        if data is None:
            raise DataError(f"{symbol} {timeframe}: no data")
        return data.tail(limit).reset_index(drop=True)

    def get_instrument_rules(self, symbol: str) -> InstrumentRules:
        return self.rules.get(symbol) or btc_rules(symbol=symbol)

    def get_last_price(self, symbol: str) -> float:
        return self.prices.get(symbol, 50_000.0)

    def set_leverage(self, symbol: str, leverage: float) -> None:
        self.leverage_calls.append((symbol, leverage))

    def place_order(self, request: OrderRequest) -> OrderAck:
        self.orders.append(request)
        if self.order_script:
            raise self.order_script.pop(0)
        return OrderAck(
            order_id=f"ord-{len(self.orders)}",
            quantity=request.quantity,
            avg_price=self.prices.get(request.symbol, 50_000.0),
            client_order_id=request.client_order_id,
        )

    def set_trading_stop(self, symbol, side: OrderSide, stop_loss, take_profit) -> None:
        self.trading_stops.append((symbol, side, stop_loss, take_profit))
        if self.tpsl_error is not None:
            raise self.tpsl_error

    def get_open_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "signals.db"
