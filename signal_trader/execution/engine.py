"""
Order execution state machine:

    VALIDATED -> SUBMITTED -> FILLED | REJECTED -> [TPSL_ATTACHED] -> LOGGED

A resting limit order stays SUBMITTED until the exchange reports an open
position; TP/SL is attached and the order recorded only after that.

Orders for one symbol are serialized by a per-symbol lock. An idempotency key
seen within `idempotency_window` returns the earlier outcome instead of placing
a second order. Every submission attempt goes to the ExecutionLog.
"""

from __future__ import annotations
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from signal_trader.core.errors import ExchangeRejection, ExecutionError, RejectCode
from signal_trader.core.types import ExecutedOrder, OrderIntent, OrderType, Position, SizedOrder
from signal_trader.execution.base import ExchangeClient, OrderAck, OrderRequest
from signal_trader.execution.retry import DEFAULT_RETRY_POLICY, RetryStep, next_step
from signal_trader.risk.sizer import PositionSizer
from signal_trader.store.executions import AttemptRecord, ExecutionLog
from signal_trader.utils.exchange_filters import round_price

logger = logging.getLogger("signal_trader.execution.engine")


class OrderState(str, Enum):
    VALIDATED = "VALIDATED"
    SUBMITTED = "SUBMITTED"
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    TPSL_ATTACHED = "TPSL_ATTACHED"
    LOGGED = "LOGGED"


class ExecutionStatus(str, Enum):
    FILLED = "FILLED"          # order filled, TP/SL attached if requested
    DEGRADED = "DEGRADED"      # order filled, TP/SL attachment failed
    REJECTED = "REJECTED"      # exchange refused every attempt
    INVALID = "INVALID"        # intent failed sizing/validation, nothing sent
    PENDING = "PENDING"        # limit order accepted and resting, not filled yet


@dataclass
class ExecutionOutcome:
    status: ExecutionStatus
    order: Optional[ExecutedOrder] = None
    attempts: int = 0
    code: str = ""
    message: str = ""
    hint: str = ""
    states: List[OrderState] = field(default_factory=list)
    replayed: bool = False
    order_id: str = ""

    @property
    def ok(self) -> bool:
        """True once the exchange accepted the order."""
        return self.status in (ExecutionStatus.FILLED, ExecutionStatus.DEGRADED, ExecutionStatus.PENDING)


class OrderExecutor:
    """Sizes, submits, retries and protects orders for one exchange account."""

    def __init__(
        self,
        client: ExchangeClient,
        log: ExecutionLog,
        sizer: Optional[PositionSizer] = None,
        retry_policy: Sequence[RetryStep] = DEFAULT_RETRY_POLICY,
        idempotency_window: timedelta = timedelta(minutes=5),
    ):
        self.client = client
        self.log = log
        self.sizer = sizer or PositionSizer()
        self.retry_policy = tuple(retry_policy)
        self.idempotency_window = idempotency_window
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._recent: Dict[str, Tuple[datetime, ExecutionOutcome]] = {}
        self._recent_lock = threading.Lock()

    def _symbol_lock(self, symbol: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(symbol)
            if lock is None:
                lock = self._locks[symbol] = threading.Lock()
            return lock

    def _prune(self, now: datetime) -> None:
        with self._recent_lock:
            expired = [k for k, (seen_at, _) in self._recent.items() if now - seen_at >= self.idempotency_window]
            for k in expired:
                del self._recent[k]
        if expired:
            logger.debug("dropped %d expired idempotency key(s)", len(expired))

    def _cached(self, key: str) -> Optional[ExecutionOutcome]:
        with self._recent_lock:
            entry = self._recent.get(key)
        return entry[1] if entry else None

    def execute(self, intent: OrderIntent, now: Optional[datetime] = None) -> ExecutionOutcome:
        """Run one intent through the state machine. Safe to call again with the same idempotency key."""
        now = now or datetime.now(timezone.utc)
        key = intent.idempotency_key
        self._prune(now)
        with self._symbol_lock(intent.symbol):
            if key:
                cached = self._cached(key)
                if cached is not None:
                    logger.info("%s: idempotency key %s already executed, returning order %s",
                                intent.symbol, key, cached.order_id or None)
                    return replace(cached, replayed=True)
            outcome = self._execute_locked(intent, key or uuid.uuid4().hex[:16], now)
            # Only orders that reached the exchange are deduplicated; failures may be retried
            if key and outcome.ok:
                with self._recent_lock:
                    self._recent[key] = (now, outcome)
            return outcome

    def _record(self, intent: OrderIntent, key: str, now: datetime, **kwargs) -> None:
        self.log.record_attempt(AttemptRecord(
            symbol=intent.symbol,
            side=intent.side.value,
            idempotency_key=key,
            created_at=now,
            **kwargs,
        ))

    def _initial_request(self, intent: OrderIntent, sized: SizedOrder, tick: float, key: str) -> OrderRequest:
        limit = intent.order_type is OrderType.LIMIT
        return OrderRequest(
            symbol=intent.symbol,
            side=intent.side,
            quantity=sized.quantity,
            order_type=intent.order_type,
            price=round_price(sized.price, tick) if limit else None,
            reduce_only=intent.reduce_only,
            time_in_force="GTC" if limit else "IOC",
            client_order_id=f"{key}-1",
        )

    def _execute_locked(self, intent: OrderIntent, key: str, now: datetime) -> ExecutionOutcome:
        states: List[OrderState] = []
        try:
            rules = self.client.get_instrument_rules(intent.symbol)
            if intent.order_type is OrderType.LIMIT and intent.limit_price:
                price = intent.limit_price
            else:
                price = self.client.get_last_price(intent.symbol)
        except ExecutionError as e:
            code = e.code.value if isinstance(e, ExchangeRejection) else RejectCode.NETWORK.value
            logger.warning("%s: could not load market data for sizing: %s", intent.symbol, e)
            self._record(intent, key, now, stage="sizing", outcome="rejected", code=code, message=str(e))
            return ExecutionOutcome(ExecutionStatus.REJECTED, code=code, message=str(e), states=states)

        sized = self.sizer.size(intent, rules, price)
        if not sized.ok:
            logger.warning("%s: order rejected by sizer [%s] %s (%s)",
                           intent.symbol, sized.code, sized.message, sized.hint)
            self._record(intent, key, now, stage="sizing", outcome="invalid", price=price,
                         leverage=intent.leverage, code=sized.code, message=sized.message)
            return ExecutionOutcome(
                ExecutionStatus.INVALID, code=sized.code, message=sized.message, hint=sized.hint, states=states
            )
        order = sized.value
        states.append(OrderState.VALIDATED)

        try:
            self.client.set_leverage(intent.symbol, order.leverage)
        except ExecutionError as e:
            code = e.code.value if isinstance(e, ExchangeRejection) else RejectCode.NETWORK.value
            logger.warning("%s: set leverage failed: %s", intent.symbol, e)
            self._record(intent, key, now, stage="leverage", outcome="rejected", leverage=order.leverage,
                         code=code, message=str(e))
            return ExecutionOutcome(ExecutionStatus.REJECTED, code=code, message=str(e), states=states)

        original = self._initial_request(intent, order, rules.tick_size, key)
        request = original
        ack: Optional[OrderAck] = None
        last_error: Optional[ExecutionError] = None
        last_code = RejectCode.UNKNOWN
        attempt = 0
        used = 0
        while True:
            attempt += 1
            states.append(OrderState.SUBMITTED)
            try:
                ack = self.client.place_order(request)
            except ExecutionError as e:
                last_error = e
                last_code = e.code if isinstance(e, ExchangeRejection) else RejectCode.NETWORK
                logger.warning("%s: attempt %d rejected [%s] %s", intent.symbol, attempt, last_code.value, e)
                self._record(
                    intent, key, now, stage="submit", outcome="rejected", attempt=attempt,
                    quantity=request.quantity, price=order.price, leverage=order.leverage,
                    order_type=request.order_type.value, reduce_only=request.reduce_only,
                    code=last_code.value, message=str(e),
                )
                step, used = next_step(self.retry_policy, used, last_code)
                if step is None:
                    break
                logger.info("%s: retrying with %s", intent.symbol, step.name)
                request = replace(step.mutate(original, request), client_order_id=f"{key}-{attempt + 1}")
                continue
            break

        if ack is None:
            states += [OrderState.REJECTED, OrderState.LOGGED]
            logger.error("%s: order rejected after %d attempt(s): %s", intent.symbol, attempt, last_error)
            return ExecutionOutcome(
                ExecutionStatus.REJECTED,
                attempts=attempt,
                code=last_code.value,
                message=str(last_error),
                states=states,
            )

        entry_price = ack.avg_price or order.price
        if request.order_type is OrderType.LIMIT:
            position = self._filled_position(intent.symbol)
            if position is None:
                self._record(
                    intent, key, now, stage="submit", outcome="pending", attempt=attempt,
                    quantity=ack.quantity, price=order.price, leverage=order.leverage,
                    order_type=request.order_type.value, reduce_only=request.reduce_only, order_id=ack.order_id,
                )
                states.append(OrderState.LOGGED)
                logger.info("%s %s limit order %s resting at %s, TP/SL not attached until filled",
                            intent.symbol, intent.side.value, ack.order_id, order.price)
                return ExecutionOutcome(
                    ExecutionStatus.PENDING,
                    attempts=attempt,
                    order_id=ack.order_id,
                    hint="limit order not filled yet; attach stop-loss/take-profit once it fills",
                    states=states,
                )
            entry_price = position.entry_price or entry_price

        states.append(OrderState.FILLED)
        self._record(
            intent, key, now, stage="submit", outcome="ok", attempt=attempt,
            quantity=ack.quantity, price=entry_price, leverage=order.leverage,
            order_type=request.order_type.value, reduce_only=request.reduce_only, order_id=ack.order_id,
        )
        logger.info("%s %s filled: qty=%s price=%s lev=%sx order_id=%s",
                    intent.symbol, intent.side.value, ack.quantity, entry_price, order.leverage, ack.order_id)

        stop_loss = round_price(intent.stop_loss, rules.tick_size) if intent.stop_loss is not None else None
        take_profit = round_price(intent.take_profit, rules.tick_size) if intent.take_profit is not None else None
        protected = True
        tpsl_error = ""
        if stop_loss is not None or take_profit is not None:
            try:
                self.client.set_trading_stop(intent.symbol, intent.side, stop_loss, take_profit)
                states.append(OrderState.TPSL_ATTACHED)
            except ExecutionError as e:
                protected = False
                tpsl_error = str(e)
                logger.error("%s: DEGRADED order %s is open without TP/SL protection: %s",
                             intent.symbol, ack.order_id, e)
                self._record(
                    intent, key, now, stage="tpsl", outcome="degraded", attempt=attempt,
                    quantity=ack.quantity, price=entry_price, leverage=order.leverage,
                    order_id=ack.order_id,
                    code=e.code.value if isinstance(e, ExchangeRejection) else RejectCode.NETWORK.value,
                    message=tpsl_error,
                )

        executed = ExecutedOrder(
            order_id=ack.order_id,
            symbol=intent.symbol,
            side=intent.side,
            quantity=ack.quantity,
            entry_price=entry_price,
            leverage=order.leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
            created_at=now,
            protected=protected,
        )
        self.log.record_order(executed)
        states.append(OrderState.LOGGED)
        return ExecutionOutcome(
            ExecutionStatus.FILLED if protected else ExecutionStatus.DEGRADED,
            order=executed,
            attempts=attempt,
            order_id=ack.order_id,
            message=tpsl_error,
            hint="" if protected else "position is open without stop-loss/take-profit; attach manually",
            states=states,
        )

    def _filled_position(self, symbol: str) -> Optional[Position]:
        try:
            return self.client.get_open_position(symbol)
        except ExecutionError as e:
            logger.warning("%s: could not confirm limit fill: %s", symbol, e)
            return None

    def reconcile(self, now: Optional[datetime] = None) -> List[str]:
        """Close logged orders whose symbol no longer has an open position. Returns closed order ids."""
        now = now or datetime.now(timezone.utc)
        closed: List[str] = []
        by_symbol: Dict[str, List[ExecutedOrder]] = {}
        for order in self.log.open_orders():
            by_symbol.setdefault(order.symbol, []).append(order)
        for symbol, orders in by_symbol.items():
            try:
                position = self.client.get_open_position(symbol)
            except ExecutionError as e:
                logger.warning("%s: reconcile skipped, position lookup failed: %s", symbol, e)
                continue
            if position is not None:
                continue
            for order in orders:
                if self.log.mark_closed(order.order_id, now):
                    closed.append(order.order_id)
                    logger.info("%s: order %s closed (no open position)", symbol, order.order_id)
        return closed
