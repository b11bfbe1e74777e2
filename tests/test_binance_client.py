"""Binance futures adapter over an in-memory python-binance stand-in."""

import pytest
import requests

from signal_trader.core.errors import ExecutionError, InfrastructureError, RejectCode
from signal_trader.core.types import OrderSide, OrderType
from signal_trader.execution.base import OrderRequest
from signal_trader.execution.binance_futures import BinanceFuturesClient, map_binance_error


class StubBinance:
    """Records python-binance method calls and returns canned payloads."""

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def __getattr__(self, name):
        def method(**kwargs):
            self.calls.append((name, kwargs))
            value = self.responses.get(name)
            if isinstance(value, Exception):
                raise value
            return value
        return method


def test_requires_credentials_without_injected_client():
    with pytest.raises(InfrastructureError):
        BinanceFuturesClient("", "")


def test_market_order_params():
    stub = StubBinance(futures_create_order={"orderId": 42, "avgPrice": "50010.5", "clientOrderId": "k-1"})
    client = BinanceFuturesClient("", "", client=stub)
    ack = client.place_order(OrderRequest(
        symbol="BTCUSDT", side=OrderSide.BUY, quantity=0.01, order_type=OrderType.MARKET,
        reduce_only=True, time_in_force="IOC", client_order_id="k-1",
    ))
    name, params = stub.calls[0]
    assert name == "futures_create_order"
    assert params == {
        "symbol": "BTCUSDT", "side": "BUY", "type": "MARKET", "quantity": "0.01",
        "reduceOnly": "true", "newClientOrderId": "k-1",
    }
    assert ack.order_id == "42"
    assert ack.avg_price == pytest.approx(50010.5)


def test_tpsl_as_close_position_orders():
    stub = StubBinance(futures_create_order={})
    client = BinanceFuturesClient("", "", client=stub)
    client.set_trading_stop("BTCUSDT", OrderSide.BUY, 49_000.0, 51_500.0)
    kinds = [(p["type"], p["side"], p["stopPrice"]) for _, p in stub.calls]
    assert kinds == [("STOP_MARKET", "SELL", "49000.0"), ("TAKE_PROFIT_MARKET", "SELL", "51500.0")]
    assert all(p["closePosition"] == "true" for _, p in stub.calls)


def test_klines_to_frame():
    row = [1700000000000, "1", "2", "0.5", "1.5", "10", 1700003599999, "15", 3, "5", "7", "0"]
    client = BinanceFuturesClient("", "", client=StubBinance(futures_klines=[row]))
    df = client.get_klines("BTCUSDT", "1h", 1)
    assert list(df.columns) == ["time", "open", "high", "low", "close", "volume"]
    assert df["close"].iloc[0] == 1.5


def test_open_position_short():
    stub = StubBinance(futures_position_information=[
        {"positionAmt": "-0.5", "entryPrice": "2000", "unRealizedProfit": "-3", "leverage": "5"}
    ])
    position = BinanceFuturesClient("", "", client=stub).get_open_position("ETHUSDT")
    assert position.side is OrderSide.SELL
    assert position.quantity == 0.5


def test_transport_error_is_execution_error():
    stub = StubBinance(futures_symbol_ticker=requests.ConnectionError("reset"))
    with pytest.raises(ExecutionError):
        BinanceFuturesClient("", "", client=stub).get_last_price("BTCUSDT")


def test_map_binance_error():
    assert map_binance_error(-2019) is RejectCode.INSUFFICIENT_BALANCE
    assert map_binance_error(-2022) is RejectCode.POSITION_CONFLICT
    assert map_binance_error(-1, status_code=429) is RejectCode.RATE_LIMITED
    assert map_binance_error(-4116) is RejectCode.DUPLICATE_ORDER
    assert map_binance_error(-9999) is RejectCode.UNKNOWN
