"""
Retry policy table for rejected order submissions.

Each step is used at most once, in order. A step fires when the last
rejection's code is in its triggers and produces the next request from the
original one. Only position-state rejections are retried; codes in
NON_RETRYABLE stop the sequence immediately.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, FrozenSet, Optional, Sequence, Tuple

from signal_trader.core.errors import RejectCode
from signal_trader.core.types import OrderType
from signal_trader.execution.base import OrderRequest

NON_RETRYABLE = frozenset({
    RejectCode.AUTH_FAILED,
    RejectCode.PERMISSION_DENIED,
    RejectCode.INSUFFICIENT_BALANCE,
    RejectCode.ORDER_VALUE_TOO_LOW,
    RejectCode.NETWORK,
    RejectCode.DUPLICATE_ORDER,
})


@dataclass(frozen=True)
class RetryStep:
    name: str
    triggers: FrozenSet[RejectCode]
    mutate: Callable[[OrderRequest, OrderRequest], OrderRequest]   # (original, last) -> next

    def applies(self, code: RejectCode) -> bool:
        return code in self.triggers


def toggle_reduce_only(original: OrderRequest, last: OrderRequest) -> OrderRequest:
    return replace(last, reduce_only=not original.reduce_only)


def force_plain_market(original: OrderRequest, last: OrderRequest) -> OrderRequest:
    return replace(
        original,
        order_type=OrderType.MARKET,
        price=None,
        time_in_force=None,
        client_order_id=last.client_order_id,
    )


DEFAULT_RETRY_POLICY: Tuple[RetryStep, ...] = (
    RetryStep("toggle_reduce_only", frozenset({RejectCode.POSITION_CONFLICT}), toggle_reduce_only),
    RetryStep("force_plain_market", frozenset({RejectCode.POSITION_CONFLICT}), force_plain_market),
)


def next_step(
    policy: Sequence[RetryStep],
    used: int,
    code: RejectCode,
) -> Tuple[Optional[RetryStep], int]:
    """
    First applicable step at or after index `used`.
    Returns (step, index after it) or (None, used).
    """
    if code in NON_RETRYABLE:
        return None, used
    for i in range(used, len(policy)):
        if policy[i].applies(code):
            return policy[i], i + 1
    return None, used
