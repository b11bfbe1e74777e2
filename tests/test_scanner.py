"""Scan orchestrator: error containment, batching, dedup and forming-bar handling."""

from datetime import timedelta

import pytest

from signal_trader.core.config import RuleConfig
from signal_trader.core.errors import DataError, InfrastructureError
from signal_trader.core.types import Direction
from signal_trader.scanner.orchestrator import ScanOrchestrator, drop_forming, validate_candles
from signal_trader.store.cooldown import InMemoryCooldownStore
from signal_trader.store.signals import SignalStore
from signal_trader.strategies.crossover import CrossoverStrategy

from conftest import golden_cross_candles, make_candles

PLAIN = RuleConfig(use_stochastic=False, use_dmi=False)
GOLDEN = golden_cross_candles(300)
LAST_BAR = GOLDEN["time"].iloc[-1].to_pydatetime()
NOW = LAST_BAR + timedelta(hours=1)


def flat_candles(n=300):
    return make_candles([1000.0] * n)


def orchestrator(client, store, symbols, cooldown=None, **kwargs):
    strategies = {"1h": CrossoverStrategy(PLAIN, cooldown or InMemoryCooldownStore())}
    return ScanOrchestrator(client, strategies, store, symbols, **kwargs)


@pytest.fixture
def store(db_path):
    return SignalStore(db_path)


def test_scan_records_signal_and_dispatches(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    fake_exchange.klines[("ETHUSDT", "1h")] = flat_candles()
    seen = []
    report = orchestrator(fake_exchange, store, ["BTCUSDT", "ETHUSDT"], on_signal=seen.append).scan(NOW)
    assert report.evaluated == 2
    assert len(report.signals) == 1
    signal = report.signals[0]
    assert signal.symbol == "BTCUSDT"
    assert signal.direction is Direction.LONG
    assert seen == report.signals
    assert [s.id for s in store.list_active()] == [signal.id]


def test_per_symbol_failures_are_contained(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    fake_exchange.klines[("ETHUSDT", "1h")] = RuntimeError("boom")
    fake_exchange.klines[("SOLUSDT", "1h")] = make_candles([100.0] * 50)
    # XRPUSDT has no data at all -> DataError from the client
    report = orchestrator(fake_exchange, store, ["BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT"]).scan(NOW)
    assert len(report.signals) == 1
    assert set(report.skipped) == {"SOLUSDT 1h", "XRPUSDT 1h"}
    assert "insufficient history" in report.skipped["SOLUSDT 1h"]
    assert report.errors == {"ETHUSDT 1h": "RuntimeError: boom"}


def test_infrastructure_error_aborts_scan(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = InfrastructureError("store unavailable")
    with pytest.raises(InfrastructureError):
        orchestrator(fake_exchange, store, ["BTCUSDT"]).scan(NOW)


def test_second_instance_same_bar_is_duplicate(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    first = orchestrator(fake_exchange, store, ["BTCUSDT"]).scan(NOW)
    # Separate process: own cooldown memory, shared signal database
    second = orchestrator(fake_exchange, store, ["BTCUSDT"]).scan(NOW + timedelta(minutes=1))
    assert len(first.signals) == 1
    assert second.signals == []
    assert second.duplicates == 1
    assert len(store.list_active()) == 1


def test_shared_cooldown_suppresses_repeat(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    scanner = orchestrator(fake_exchange, store, ["BTCUSDT"])
    assert len(scanner.scan(NOW).signals) == 1
    again = scanner.scan(NOW + timedelta(minutes=1))
    assert again.signals == [] and again.duplicates == 0


def test_forming_bar_is_dropped(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    report = orchestrator(fake_exchange, store, ["BTCUSDT"]).scan(LAST_BAR + timedelta(minutes=30))
    assert report.signals == []
    assert report.evaluated == 1


def test_batches_with_delay(fake_exchange, store):
    symbols = ["AUSDT", "BUSDT", "CUSDT", "DUSDT", "EUSDT"]
    for s in symbols:
        fake_exchange.klines[(s, "1h")] = flat_candles()
    sleeps = []
    scanner = orchestrator(fake_exchange, store, symbols, max_workers=2, batch_delay_s=0.5, sleep=sleeps.append)
    report = scanner.scan(NOW)
    assert report.evaluated == 5
    assert sleeps == [0.5, 0.5]
    assert {c[0] for c in fake_exchange.kline_calls} == set(symbols)


def test_scan_expires_stale_signals(fake_exchange, store):
    fake_exchange.klines[("BTCUSDT", "1h")] = GOLDEN
    orchestrator(fake_exchange, store, ["BTCUSDT"]).scan(NOW)
    later = orchestrator(fake_exchange, store, []).scan(NOW + timedelta(hours=5))
    assert later.expired == 1
    assert store.list_active() == []


def test_validate_candles_rejects_bad_frames():
    df = flat_candles(10)
    assert validate_candles(df, "X", "1h") is df
    with pytest.raises(DataError):
        validate_candles(df.iloc[0:0], "X", "1h")
    with pytest.raises(DataError):
        validate_candles(df.iloc[::-1].reset_index(drop=True), "X", "1h")
    broken = df.copy()
    broken.loc[3, "high"] = broken.loc[3, "low"] - 5
    with pytest.raises(DataError):
        validate_candles(broken, "X", "1h")


def test_drop_forming_keeps_closed_bar():
    df = flat_candles(3)
    last = df["time"].iloc[-1].to_pydatetime()
    assert len(drop_forming(df, "1h", last + timedelta(hours=1))) == 3
    assert len(drop_forming(df, "1h", last + timedelta(minutes=59))) == 2
