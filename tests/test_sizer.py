"""Unit tests for risk.sizer."""

import re

import pytest

from signal_trader.core.errors import ValidationError
from signal_trader.core.types import OrderIntent, OrderSide, SizingMode
from signal_trader.risk import sizer as codes
from signal_trader.risk.sizer import PositionSizer

from conftest import btc_rules


def intent(**overrides) -> OrderIntent:
    values = dict(symbol="BTCUSDT", side=OrderSide.BUY, sizing_mode=SizingMode.NOTIONAL, leverage=5, amount=100.0)
    values.update(overrides)
    return OrderIntent(**values)


def test_notional_mode_quantity():
    sizer = PositionSizer()
    raw = sizer.raw_quantity(intent(), 50_000.0)
    assert raw.value == pytest.approx((100 * 5) / 50_000)
    result = sizer.size(intent(), btc_rules(), 50_000.0)
    assert result.ok
    assert result.value.quantity == pytest.approx(0.01)
    assert result.value.order_value == pytest.approx(500.0)


def test_rounding_only_decreases():
    sizer = PositionSizer()
    for amount in (101.0, 123.45, 250.99, 999.99):
        raw = sizer.raw_quantity(intent(amount=amount), 43_210.0).value
        sized = sizer.size(intent(amount=amount), btc_rules(), 43_210.0).value
        assert sized.quantity <= raw
        assert raw - sized.quantity < 0.001


def test_risk_percent_mode():
    sizer = PositionSizer()
    i = intent(
        sizing_mode=SizingMode.RISK_PERCENT, leverage=2, risk_percent=1.0,
        account_balance=10_000.0, stop_loss=49_000.0,
    )
    # budget 100, leverage 2, stop distance 1000 -> 0.2
    result = sizer.size(i, btc_rules(), 50_000.0)
    assert result.ok
    assert result.value.quantity == pytest.approx(0.2)


def test_risk_percent_requires_stop():
    result = PositionSizer().size(
        intent(sizing_mode=SizingMode.RISK_PERCENT, risk_percent=1.0, account_balance=1000.0),
        btc_rules(), 50_000.0,
    )
    assert not result.ok
    assert result.code == codes.MISSING_STOP_LOSS
    assert result.hint


def test_explicit_quantity_passthrough():
    result = PositionSizer().size(
        intent(sizing_mode=SizingMode.EXPLICIT_QTY, quantity=0.0123), btc_rules(), 50_000.0
    )
    assert result.value.quantity == pytest.approx(0.012)


def test_below_min_qty_has_code_and_hint():
    result = PositionSizer().size(intent(amount=5.0, leverage=1), btc_rules(), 50_000.0)
    assert not result.ok
    assert result.code == codes.BELOW_MIN_QTY
    assert "0.001" in result.hint


def test_min_notional_rejection_suggestion_passes_on_resubmit():
    rules = btc_rules(min_order_qty=0.001, qty_step=0.001, min_notional=100.0)
    sizer = PositionSizer()
    result = sizer.size(intent(amount=60.0, leverage=1), rules, 30_000.0)
    assert not result.ok
    assert result.code == codes.BELOW_MIN_NOTIONAL
    suggested = sizer.minimum_quantity(rules, 30_000.0, 1)
    assert f"{suggested:g}" in result.hint
    retry = sizer.size(
        intent(sizing_mode=SizingMode.EXPLICIT_QTY, quantity=suggested, leverage=1), rules, 30_000.0
    )
    assert retry.ok


def test_min_notional_hint_amount_passes_in_notional_mode():
    rules = btc_rules(min_order_qty=0.001, qty_step=0.001, min_notional=100.0)
    sizer = PositionSizer()
    price = 33_333.33
    result = sizer.size(intent(amount=60.0, leverage=3), rules, price)
    assert result.code == codes.BELOW_MIN_NOTIONAL
    amount = float(re.search(r"amount >= ([0-9.]+)", result.hint).group(1))
    # 0.010 x 33333.33 / 3 = 111.111; rounding the amount down would size 0.009
    assert amount == pytest.approx(111.12)
    retry = sizer.size(intent(amount=amount, leverage=3), rules, price)
    assert retry.ok
    assert retry.value.quantity == pytest.approx(0.01)


def test_platform_floor_rejection():
    rules = btc_rules(symbol="DOGEUSDT", min_order_qty=1.0, qty_step=1.0, min_notional=0.0)
    result = PositionSizer(min_order_value=5.0).size(
        intent(symbol="DOGEUSDT", sizing_mode=SizingMode.EXPLICIT_QTY, quantity=20.0, leverage=1), rules, 0.1
    )
    assert not result.ok
    assert result.code == codes.BELOW_MIN_ORDER_VALUE
    suggested = PositionSizer(min_order_value=5.0).minimum_quantity(rules, 0.1, 1)
    assert suggested == pytest.approx(50.0)


def test_leverage_above_max_rejected():
    result = PositionSizer(max_leverage=10).size(intent(leverage=20), btc_rules(), 50_000.0)
    assert not result.ok
    assert result.code == codes.LEVERAGE_TOO_HIGH
    assert "10" in result.hint


def test_trading_disabled_and_bad_price():
    sizer = PositionSizer()
    assert sizer.size(intent(), btc_rules(trading_enabled=False), 50_000.0).code == codes.TRADING_DISABLED
    assert sizer.size(intent(), btc_rules(), 0.0).code == codes.INVALID_PRICE


def test_require_raises_validation_error():
    with pytest.raises(ValidationError) as exc:
        PositionSizer().require(intent(amount=1.0), btc_rules(), 50_000.0)
    assert exc.value.code == codes.BELOW_MIN_QTY
    assert exc.value.hint
