"""Unit tests for utils.exchange_filters."""

import pytest

from signal_trader.utils.exchange_filters import (
    ceil_quantity,
    format_qty,
    parse_binance_symbol,
    parse_bybit_instrument,
    round_price,
    round_quantity,
)


def test_round_quantity_floors_to_step():
    assert round_quantity(0.0129, 0.001) == pytest.approx(0.012)
    assert round_quantity(0.3, 0.1) == pytest.approx(0.3)
    assert round_quantity(17.9, 1.0) == 17.0
    assert round_quantity(-1.0, 0.1) == 0.0


def test_ceil_quantity():
    assert ceil_quantity(0.0031, 0.001) == pytest.approx(0.004)
    assert ceil_quantity(0.003, 0.001) == pytest.approx(0.003)


def test_round_price_to_tick():
    assert round_price(100.04, 0.1) == pytest.approx(100.0)
    assert round_price(100.05, 0.1) == pytest.approx(100.1)


def test_format_qty_no_exponent():
    assert format_qty(0.00001) == "0.00001"
    assert format_qty(12.0) == "12"


def test_parse_bybit_instrument():
    info = {
        "symbol": "BTCUSDT",
        "status": "Trading",
        "lotSizeFilter": {"minOrderQty": "0.001", "qtyStep": "0.001", "minNotionalValue": "5"},
        "priceFilter": {"minPrice": "0.10", "maxPrice": "199999.80", "tickSize": "0.10"},
        "leverageFilter": {"maxLeverage": "100.00"},
    }
    rules = parse_bybit_instrument(info)
    assert rules.symbol == "BTCUSDT"
    assert rules.min_order_qty == 0.001
    assert rules.qty_step == 0.001
    assert rules.tick_size == 0.1
    assert rules.min_notional == 5.0
    assert rules.max_leverage == 100.0
    assert rules.trading_enabled


def test_parse_bybit_instrument_not_trading():
    rules = parse_bybit_instrument({"symbol": "XUSDT", "status": "Closed", "lotSizeFilter": {"minOrderAmt": "1"}})
    assert not rules.trading_enabled
    assert rules.min_notional == 1.0


def test_parse_binance_symbol():
    info = {
        "symbol": "ETHUSDT",
        "status": "TRADING",
        "filters": [
            {"filterType": "PRICE_FILTER", "minPrice": "0.01", "maxPrice": "100000", "tickSize": "0.01"},
            {"filterType": "LOT_SIZE", "minQty": "0.001", "stepSize": "0.001"},
            {"filterType": "MIN_NOTIONAL", "notional": "20"},
        ],
    }
    rules = parse_binance_symbol(info, max_leverage=50)
    assert rules.min_order_qty == 0.001
    assert rules.tick_size == 0.01
    assert rules.min_notional == 20.0
    assert rules.max_leverage == 50
    assert rules.trading_enabled
