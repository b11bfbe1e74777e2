"""Unit tests for store.signals."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from signal_trader.core.types import Direction, Grade, SignalCandidate, SignalStatus
from signal_trader.store.signals import DUPLICATE, INVALID_TRANSITION, NOT_FOUND, SignalStore

BAR = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
NOW = BAR + timedelta(hours=1)


def candidate(**overrides) -> SignalCandidate:
    values = dict(
        symbol="BTCUSDT",
        timeframe="1h",
        direction=Direction.LONG,
        entry_price=50_000.0,
        stop_loss=49_000.0,
        take_profit=51_500.0,
        confidence=87.5,
        grade=Grade.A,
        risk_reward=1.5,
        bar_time=BAR,
        created_at=NOW,
        expires_at=NOW + timedelta(hours=4),
        primary_conditions={"trend_cross": True},
        optional_confirmations={},
        indicators={"atr": 500.0},
    )
    values.update(overrides)
    return SignalCandidate(**values)


def test_insert_and_get(db_path):
    store = SignalStore(db_path)
    result = store.insert(candidate())
    assert result.ok
    saved = store.get(result.value.id)
    assert saved.symbol == "BTCUSDT"
    assert saved.direction is Direction.LONG
    assert saved.grade is Grade.A
    assert saved.bar_time == BAR
    assert saved.primary_conditions == {"trend_cross": True}
    assert saved.indicators["atr"] == 500.0
    assert saved.status is SignalStatus.ACTIVE


def test_duplicate_key_is_benign_failure(db_path):
    store = SignalStore(db_path)
    assert store.insert(candidate()).ok
    again = store.insert(candidate(confidence=90.0))
    assert not again.ok
    assert again.code == DUPLICATE
    assert len(store.list_active()) == 1


def test_other_direction_or_bar_is_not_duplicate(db_path):
    store = SignalStore(db_path)
    assert store.insert(candidate()).ok
    assert store.insert(candidate(direction=Direction.SHORT)).ok
    assert store.insert(candidate(bar_time=BAR + timedelta(hours=1))).ok
    assert store.insert(candidate(timeframe="4h")).ok


def test_status_transitions_are_terminal(db_path):
    store = SignalStore(db_path)
    sid = store.insert(candidate()).value.id
    assert store.mark_executed(sid).ok
    again = store.mark_expired(sid)
    assert not again.ok
    assert again.code == INVALID_TRANSITION
    assert store.get(sid).status is SignalStatus.EXECUTED
    missing = store.mark_executed(9999)
    assert missing.code == NOT_FOUND


def test_expire_stale(db_path):
    store = SignalStore(db_path)
    fresh = store.insert(candidate()).value.id
    stale = store.insert(candidate(symbol="ETHUSDT", expires_at=NOW)).value.id
    assert store.expire_stale(NOW + timedelta(minutes=1)) == 1
    assert store.get(stale).status is SignalStatus.EXPIRED
    assert [s.id for s in store.list_active()] == [fresh]
    assert store.list_active(symbol="ETHUSDT") == []


def test_persisted_signal_exposes_candidate_fields(db_path):
    store = SignalStore(db_path)
    c = candidate()
    persisted = store.insert(c).value
    assert persisted.candidate is c
    assert persisted.unique_key == replace(c).unique_key
    assert (persisted.symbol, persisted.grade, persisted.expires_at) == (c.symbol, c.grade, c.expires_at)
    assert persisted.indicators is c.indicators


def test_persisted_signal_has_no_implicit_attributes(db_path):
    persisted = SignalStore(db_path).insert(candidate()).value
    with pytest.raises(AttributeError):
        persisted.not_a_field
