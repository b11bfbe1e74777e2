"""
Core data types: candles, indicator snapshots, signals, instrument rules,
order intents and executed orders.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def order_side(self) -> "OrderSide":
        return OrderSide.BUY if self is Direction.LONG else OrderSide.SELL


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class Grade(str, Enum):
    A_PLUS = "A+"
    A = "A"
    B = "B"
    C = "C"


GRADE_ORDER = [Grade.C, Grade.B, Grade.A, Grade.A_PLUS]


class SignalStatus(str, Enum):
    ACTIVE = "active"
    EXECUTED = "executed"
    EXPIRED = "expired"


class SizingMode(str, Enum):
    NOTIONAL = "notional"
    RISK_PERCENT = "risk_percent"
    EXPLICIT_QTY = "explicit_qty"


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"


class OrderStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Candle:
    """OHLCV candle. Timestamps ascend within a series."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Result(Generic[T]):
    """Tagged outcome: success carries a value, failure a code, message and hint."""
    ok: bool
    value: Optional[T] = None
    code: str = ""
    message: str = ""
    hint: str = ""

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: str, message: str, hint: str = "") -> "Result[T]":
        return cls(ok=False, code=code, message=message, hint=hint)


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values for one bar of one symbol/timeframe series."""
    symbol: str
    timeframe: str
    bar_time: datetime
    values: Dict[str, float]

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        return self.values.get(name, default)

    def comparable_with(self, other: "IndicatorSnapshot") -> bool:
        return self.symbol == other.symbol and self.timeframe == other.timeframe


@dataclass
class SignalCandidate:
    """Accepted signal produced by the rule evaluator, not yet persisted."""
    symbol: str
    timeframe: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    grade: Grade
    risk_reward: float
    bar_time: datetime
    created_at: datetime
    expires_at: datetime
    primary_conditions: Dict[str, bool] = field(default_factory=dict)
    optional_confirmations: Dict[str, bool] = field(default_factory=dict)
    indicators: Dict[str, float] = field(default_factory=dict)

    @property
    def unique_key(self) -> tuple:
        return (self.symbol, self.timeframe, self.direction.value, self.bar_time)


@dataclass
class PersistedSignal:
    """SignalCandidate with storage identity and lifecycle status."""
    id: int
    candidate: SignalCandidate
    status: SignalStatus = SignalStatus.ACTIVE

    @property
    def symbol(self) -> str:
        return self.candidate.symbol

    @property
    def timeframe(self) -> str:
        return self.candidate.timeframe

    @property
    def direction(self) -> Direction:
        return self.candidate.direction

    @property
    def entry_price(self) -> float:
        return self.candidate.entry_price

    @property
    def stop_loss(self) -> float:
        return self.candidate.stop_loss

    @property
    def take_profit(self) -> float:
        return self.candidate.take_profit

    @property
    def confidence(self) -> float:
        return self.candidate.confidence

    @property
    def grade(self) -> Grade:
        return self.candidate.grade

    @property
    def risk_reward(self) -> float:
        return self.candidate.risk_reward

    @property
    def bar_time(self) -> datetime:
        return self.candidate.bar_time

    @property
    def created_at(self) -> datetime:
        return self.candidate.created_at

    @property
    def expires_at(self) -> datetime:
        return self.candidate.expires_at

    @property
    def primary_conditions(self) -> Dict[str, bool]:
        return self.candidate.primary_conditions

    @property
    def optional_confirmations(self) -> Dict[str, bool]:
        return self.candidate.optional_confirmations

    @property
    def indicators(self) -> Dict[str, float]:
        return self.candidate.indicators

    @property
    def unique_key(self) -> tuple:
        return self.candidate.unique_key


@dataclass(frozen=True)
class InstrumentRules:
    """Per-symbol trading constraints as published by the exchange."""
    symbol: str
    min_order_qty: float
    qty_step: float
    min_price: float
    max_price: float
    tick_size: float
    min_notional: float
    max_leverage: float
    trading_enabled: bool = True


@dataclass
class OrderIntent:
    """Caller's request to open a position; consumed once by the sizer and executor."""
    symbol: str
    side: OrderSide
    sizing_mode: SizingMode
    leverage: float = 1.0
    amount: float = 0.0             # quote currency, notional mode
    risk_percent: float = 0.0       # percent of account_balance, risk mode
    account_balance: float = 0.0
    quantity: float = 0.0           # explicit mode
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[float] = None
    reduce_only: bool = False
    idempotency_key: Optional[str] = None
    signal_id: Optional[int] = None


@dataclass(frozen=True)
class SizedOrder:
    """Validated quantity for an intent at a given price."""
    quantity: float
    price: float
    leverage: float
    order_value: float


@dataclass
class ExecutedOrder:
    """Order acknowledged by the exchange."""
    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    entry_price: float
    leverage: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: OrderStatus = OrderStatus.OPEN
    created_at: Optional[datetime] = None
    protected: bool = True


@dataclass
class Position:
    """Open position state as reported by the exchange."""
    symbol: str
    side: OrderSide
    quantity: float
    entry_price: float
    unrealized_pnl: float = 0.0
    leverage: float = 1.0
