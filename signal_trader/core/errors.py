"""
Error taxonomy. Per-symbol errors are contained by the scanner; infrastructure
errors abort the whole scan or execution attempt.
"""

from __future__ import annotations
from enum import Enum


class TradingError(Exception):
    """Base class for all signal_trader errors."""


class DataError(TradingError):
    """Insufficient history, fetch timeout or malformed candles for one symbol/timeframe."""


class ValidationError(TradingError):
    """Order intent violates instrument or platform limits."""

    def __init__(self, code: str, message: str, hint: str = ""):
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint


class ExecutionError(TradingError):
    """Exchange-side failure while placing or protecting an order."""


class InfrastructureError(TradingError):
    """Shared infrastructure failure: store unavailable, credentials missing."""


class RejectCode(str, Enum):
    """Stable internal codes for exchange rejections."""
    POSITION_CONFLICT = "POSITION_CONFLICT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ORDER_VALUE_TOO_LOW = "ORDER_VALUE_TOO_LOW"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    LEVERAGE_NOT_MODIFIED = "LEVERAGE_NOT_MODIFIED"
    AUTH_FAILED = "AUTH_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RATE_LIMITED = "RATE_LIMITED"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


class ExchangeRejection(ExecutionError):
    """Exchange refused a request. Keeps the exchange's own code and text verbatim."""

    def __init__(self, raw_code: str, raw_message: str, code: RejectCode = RejectCode.UNKNOWN):
        super().__init__(f"[{raw_code}] {raw_message}")
        self.raw_code = str(raw_code)
        self.raw_message = raw_message
        self.code = code
