"""Turn accepted signals into orders when auto-execution is enabled."""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Optional

from signal_trader.core.config import Config
from signal_trader.core.types import (
    GRADE_ORDER,
    Grade,
    OrderIntent,
    OrderType,
    PersistedSignal,
    SignalStatus,
    SizingMode,
)
from signal_trader.execution.engine import ExecutionOutcome, OrderExecutor
from signal_trader.store.signals import SignalStore

logger = logging.getLogger("signal_trader.execution.auto")


def intent_from_signal(
    signal: PersistedSignal,
    sizing_mode: SizingMode,
    leverage: float,
    amount: float = 0.0,
    risk_percent: float = 0.0,
    account_balance: float = 0.0,
    order_type: OrderType = OrderType.MARKET,
) -> OrderIntent:
    """Entry side from the signal direction; SL/TP from the signal; idempotency key per signal id."""
    return OrderIntent(
        symbol=signal.symbol,
        side=signal.direction.order_side,
        sizing_mode=sizing_mode,
        leverage=leverage,
        amount=amount,
        risk_percent=risk_percent,
        account_balance=account_balance,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        order_type=order_type,
        limit_price=signal.entry_price if order_type is OrderType.LIMIT else None,
        idempotency_key=f"sig-{signal.id}",
        signal_id=signal.id,
    )


class AutoTrader:
    def __init__(
        self,
        executor: OrderExecutor,
        signals: SignalStore,
        min_grade: Grade = Grade.A,
        sizing_mode: SizingMode = SizingMode.NOTIONAL,
        leverage: float = 1.0,
        amount: float = 0.0,
        risk_percent: float = 0.0,
        account_balance: float = 0.0,
        order_type: OrderType = OrderType.MARKET,
    ):
        self.executor = executor
        self.signals = signals
        self.min_grade = min_grade
        self.sizing_mode = sizing_mode
        self.leverage = leverage
        self.amount = amount
        self.risk_percent = risk_percent
        self.account_balance = account_balance
        self.order_type = order_type

    @classmethod
    def from_config(cls, config: Config, executor: OrderExecutor, signals: SignalStore) -> "AutoTrader":
        return cls(
            executor,
            signals,
            min_grade=Grade(config.execute_min_grade),
            sizing_mode=SizingMode(config.sizing_mode),
            leverage=config.leverage,
            amount=config.order_amount_usd,
            risk_percent=config.risk_percent,
            account_balance=config.account_balance_usd,
            order_type=OrderType(config.order_type),
        )

    def eligible(self, signal: PersistedSignal, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if signal.status is not SignalStatus.ACTIVE or signal.expires_at <= now:
            return False
        return GRADE_ORDER.index(signal.grade) >= GRADE_ORDER.index(self.min_grade)

    def handle(self, signal: PersistedSignal, now: Optional[datetime] = None) -> Optional[ExecutionOutcome]:
        """Execute an eligible signal; marks it executed once an order exists."""
        if not self.eligible(signal, now):
            logger.debug("Signal %s (%s) not eligible for auto-execution", signal.id, signal.grade.value)
            return None
        intent = intent_from_signal(
            signal,
            self.sizing_mode,
            self.leverage,
            amount=self.amount,
            risk_percent=self.risk_percent,
            account_balance=self.account_balance,
            order_type=self.order_type,
        )
        outcome = self.executor.execute(intent, now)
        if outcome.ok:
            marked = self.signals.mark_executed(signal.id)
            if not marked.ok:
                logger.warning("Signal %s executed but not marked: %s", signal.id, marked.message)
        else:
            logger.warning("Signal %s auto-execution %s [%s] %s",
                           signal.id, outcome.status.value, outcome.code, outcome.message)
        return outcome
