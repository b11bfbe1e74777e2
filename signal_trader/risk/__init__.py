"""Risk: position sizing and instrument-limit validation."""

from signal_trader.risk.sizer import PositionSizer

__all__ = ["PositionSizer"]
