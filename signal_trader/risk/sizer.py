"""
Position sizer: OrderIntent + InstrumentRules + price -> validated quantity.

Modes:
  notional      qty = amount * leverage / price
  risk_percent  qty = (balance * risk% * leverage) / (price * |price - stop| / price)
  explicit_qty  qty = intent.quantity
Then, in order: round down to qty_step, min qty, implied notional
(qty * price / leverage) vs min_notional, order value vs platform floor,
leverage vs max leverage. Values are never clamped; each rejection carries a
reason code and a hint with the smallest quantity that would pass.
"""

from __future__ import annotations
import logging
import math
from typing import Optional

from signal_trader.core.errors import ValidationError
from signal_trader.core.types import InstrumentRules, OrderIntent, Result, SizedOrder, SizingMode
from signal_trader.utils.exchange_filters import (
    PLATFORM_MIN_ORDER_VALUE,
    ceil_quantity,
    format_qty,
    round_quantity,
)

logger = logging.getLogger("signal_trader.risk.sizer")

INVALID_PRICE = "INVALID_PRICE"
INVALID_AMOUNT = "INVALID_AMOUNT"
INVALID_LEVERAGE = "INVALID_LEVERAGE"
MISSING_STOP_LOSS = "MISSING_STOP_LOSS"
INVALID_STOP_LOSS = "INVALID_STOP_LOSS"
TRADING_DISABLED = "TRADING_DISABLED"
BELOW_MIN_QTY = "BELOW_MIN_QTY"
BELOW_MIN_NOTIONAL = "BELOW_MIN_NOTIONAL"
BELOW_MIN_ORDER_VALUE = "BELOW_MIN_ORDER_VALUE"
LEVERAGE_TOO_HIGH = "LEVERAGE_TOO_HIGH"

EPS = 1e-9


class PositionSizer:
    """Stateless apart from the platform floor and account-level leverage cap."""

    def __init__(self, min_order_value: float = PLATFORM_MIN_ORDER_VALUE, max_leverage: Optional[float] = None):
        self.min_order_value = min_order_value
        self.max_leverage = max_leverage

    def leverage_cap(self, rules: InstrumentRules) -> float:
        if self.max_leverage is None:
            return rules.max_leverage
        return min(rules.max_leverage, self.max_leverage)

    def minimum_quantity(self, rules: InstrumentRules, price: float, leverage: float) -> float:
        """Smallest step-aligned quantity that clears min qty, min notional and the platform floor."""
        needed = max(
            rules.min_order_qty,
            rules.min_notional * leverage / price,
            self.min_order_value / price,
        )
        return ceil_quantity(needed, rules.qty_step)

    def raw_quantity(self, intent: OrderIntent, price: float) -> Result[float]:
        """Unrounded quantity for the intent's sizing mode."""
        mode = intent.sizing_mode
        if mode is SizingMode.NOTIONAL:
            if intent.amount <= 0:
                return Result.failure(INVALID_AMOUNT, f"amount must be positive, got {intent.amount}")
            return Result.success(intent.amount * intent.leverage / price)
        if mode is SizingMode.RISK_PERCENT:
            if intent.stop_loss is None:
                return Result.failure(
                    MISSING_STOP_LOSS,
                    "risk_percent sizing needs a stop-loss price",
                    hint="set stop_loss or use notional sizing",
                )
            stop_fraction = abs(price - intent.stop_loss) / price
            if stop_fraction <= 0:
                return Result.failure(
                    INVALID_STOP_LOSS,
                    f"stop-loss {intent.stop_loss} equals entry price {price}",
                    hint="place the stop away from the entry price",
                )
            if intent.risk_percent <= 0 or intent.account_balance <= 0:
                return Result.failure(
                    INVALID_AMOUNT,
                    f"risk_percent ({intent.risk_percent}) and account_balance "
                    f"({intent.account_balance}) must be positive",
                )
            budget = intent.account_balance * intent.risk_percent / 100.0
            return Result.success(budget * intent.leverage / (price * stop_fraction))
        if intent.quantity <= 0:
            return Result.failure(INVALID_AMOUNT, f"quantity must be positive, got {intent.quantity}")
        return Result.success(intent.quantity)

    def require(self, intent: OrderIntent, rules: InstrumentRules, price: float) -> SizedOrder:
        """Like size() but raises ValidationError instead of returning a failure."""
        result = self.size(intent, rules, price)
        if not result.ok:
            raise ValidationError(result.code, result.message, result.hint)
        return result.value

    def size(self, intent: OrderIntent, rules: InstrumentRules, price: float) -> Result[SizedOrder]:
        if price is None or price <= 0:
            return Result.failure(INVALID_PRICE, f"{intent.symbol}: invalid price {price}")
        if not rules.trading_enabled:
            return Result.failure(
                TRADING_DISABLED,
                f"{intent.symbol}: trading is disabled on the exchange",
                hint="choose another symbol",
            )
        leverage = intent.leverage
        if leverage <= 0:
            return Result.failure(INVALID_LEVERAGE, f"leverage must be positive, got {leverage}")

        raw = self.raw_quantity(intent, price)
        if not raw.ok:
            return Result.failure(raw.code, f"{intent.symbol}: {raw.message}", raw.hint)
        qty = round_quantity(raw.value, rules.qty_step)

        suggested = self.minimum_quantity(rules, price, leverage)
        # Round the amount up so resubmitting it in notional mode clears the minimum
        min_amount = math.ceil(suggested * price / leverage * 100) / 100
        suggestion = (
            f"use quantity >= {format_qty(suggested)} "
            f"(amount >= {min_amount:.2f} at {leverage:g}x)"
        )
        if qty + EPS < rules.min_order_qty:
            return Result.failure(
                BELOW_MIN_QTY,
                f"{intent.symbol}: quantity {format_qty(qty)} below minimum {format_qty(rules.min_order_qty)}",
                hint=suggestion,
            )
        implied_notional = qty * price / leverage
        if implied_notional + EPS < rules.min_notional:
            return Result.failure(
                BELOW_MIN_NOTIONAL,
                f"{intent.symbol}: notional {implied_notional:.4f} below minimum {rules.min_notional}",
                hint=suggestion,
            )
        order_value = qty * price
        if order_value + EPS < self.min_order_value:
            return Result.failure(
                BELOW_MIN_ORDER_VALUE,
                f"{intent.symbol}: order value {order_value:.4f} below platform minimum {self.min_order_value}",
                hint=suggestion,
            )
        cap = self.leverage_cap(rules)
        if leverage > cap:
            return Result.failure(
                LEVERAGE_TOO_HIGH,
                f"{intent.symbol}: leverage {leverage:g}x exceeds maximum {cap:g}x",
                hint=f"use leverage <= {cap:g}",
            )
        logger.debug("%s sized: qty=%s price=%s lev=%s", intent.symbol, format_qty(qty), price, leverage)
        return Result.success(SizedOrder(quantity=qty, price=price, leverage=leverage, order_value=order_value))
