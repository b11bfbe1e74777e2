"""Indicators: pure pandas functions and snapshot builder."""

from signal_trader.indicators.library import (
    latest,
    sma,
    ema,
    atr,
    rsi,
    dmi,
    stochastic,
    bollinger,
    volume_average,
    hvp,
    crossed_above,
    crossed_below,
)
from signal_trader.indicators.snapshot import build_snapshots, NOT_READY

__all__ = [
    "latest",
    "sma",
    "ema",
    "atr",
    "rsi",
    "dmi",
    "stochastic",
    "bollinger",
    "volume_average",
    "hvp",
    "crossed_above",
    "crossed_below",
    "build_snapshots",
    "NOT_READY",
]
