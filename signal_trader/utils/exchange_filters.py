"""Lot size and price filter helpers; exchange payloads -> InstrumentRules."""

from __future__ import annotations
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional

from signal_trader.core.types import InstrumentRules

# Platform-wide minimum order value in quote currency (Bybit linear: 5 USDT)
PLATFORM_MIN_ORDER_VALUE = 5.0


def _to_step(value: float, step: float, rounding: str) -> float:
    if step <= 0:
        return float(value)
    d_step = Decimal(str(step))
    units = (Decimal(str(value)) / d_step).to_integral_value(rounding=rounding)
    return float(units * d_step)


def round_quantity(qty: float, step_size: float) -> float:
    """Round down to step size. Never increases magnitude."""
    if qty <= 0:
        return 0.0
    return _to_step(qty, step_size, ROUND_FLOOR)


def ceil_quantity(qty: float, step_size: float) -> float:
    """Round up to step size (used for remediation hints)."""
    if qty <= 0:
        return 0.0
    return _to_step(qty, step_size, ROUND_CEILING)


def format_qty(qty: float) -> str:
    """Plain decimal string for request payloads (no exponent)."""
    return f"{qty:.8f}".rstrip("0").rstrip(".") or "0"


def round_price(price: float, tick_size: float) -> float:
    """Round price to exchange tick."""
    return _to_step(price, tick_size, ROUND_HALF_UP)


def parse_bybit_instrument(info: dict, default_max_leverage: float = 100.0) -> InstrumentRules:
    """Build InstrumentRules from one `/v5/market/instruments-info` list entry."""
    lot = info.get("lotSizeFilter", {}) or {}
    price = info.get("priceFilter", {}) or {}
    leverage = info.get("leverageFilter", {}) or {}
    # Linear contracts publish minNotionalValue, spot publishes minOrderAmt
    min_notional = lot.get("minNotionalValue") or lot.get("minOrderAmt") or 0
    return InstrumentRules(
        symbol=info.get("symbol", ""),
        min_order_qty=float(lot.get("minOrderQty", 0) or 0),
        qty_step=float(lot.get("qtyStep") or lot.get("basePrecision") or 0),
        min_price=float(price.get("minPrice", 0) or 0),
        max_price=float(price.get("maxPrice", 0) or 0),
        tick_size=float(price.get("tickSize", 0) or 0),
        min_notional=float(min_notional),
        max_leverage=float(leverage.get("maxLeverage", default_max_leverage) or default_max_leverage),
        trading_enabled=info.get("status", "Trading") == "Trading",
    )


def parse_binance_symbol(
    symbol_info: Optional[dict],
    max_leverage: float = 125.0,
) -> InstrumentRules:
    """
    Build InstrumentRules from a futures_exchange_info() symbol entry
    (LOT_SIZE, PRICE_FILTER, MIN_NOTIONAL filters).
    """
    symbol_info = symbol_info or {}
    min_qty = 0.0
    lot_step = 0.0
    min_price = 0.0
    max_price = 0.0
    price_tick = 0.0
    min_notional = 0.0
    for f in symbol_info.get("filters", []):
        kind = f.get("filterType")
        if kind == "LOT_SIZE":
            min_qty = float(f.get("minQty", min_qty))
            lot_step = float(f.get("stepSize", lot_step))
        elif kind == "PRICE_FILTER":
            min_price = float(f.get("minPrice", min_price))
            max_price = float(f.get("maxPrice", max_price))
            price_tick = float(f.get("tickSize", price_tick))
        elif kind == "MIN_NOTIONAL":
            min_notional = float(f.get("notional", f.get("minNotional", min_notional)))
    return InstrumentRules(
        symbol=symbol_info.get("symbol", ""),
        min_order_qty=min_qty,
        qty_step=lot_step,
        min_price=min_price,
        max_price=max_price,
        tick_size=price_tick,
        min_notional=min_notional,
        max_leverage=max_leverage,
        trading_enabled=symbol_info.get("status", "TRADING") == "TRADING",
    )
