"""
Scan orchestrator: symbol x timeframe matrix -> candles -> rule evaluation -> signal store.

Jobs run on a thread pool in batches of `max_workers` with `batch_delay_s`
between batches. Per-symbol failures are recorded and skipped; an
InfrastructureError aborts the scan.
"""

from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from signal_trader.core.config import Config
from signal_trader.core.errors import DataError, InfrastructureError
from signal_trader.core.types import PersistedSignal
from signal_trader.execution.base import ExchangeClient
from signal_trader.store.cooldown import CooldownStore
from signal_trader.store.signals import DUPLICATE, SignalStore
from signal_trader.strategies.base import BaseStrategy
from signal_trader.strategies.crossover import CrossoverStrategy
from signal_trader.utils.timeframes import timeframe_delta

logger = logging.getLogger("signal_trader.scanner")

_DUPLICATE = object()


@dataclass
class ScanReport:
    """Summary of one scan."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    signals: List[PersistedSignal] = field(default_factory=list)
    duplicates: int = 0
    expired: int = 0
    skipped: Dict[str, str] = field(default_factory=dict)   # "SYMBOL tf" -> reason (DataError)
    errors: Dict[str, str] = field(default_factory=dict)    # "SYMBOL tf" -> unexpected error

    def summary(self) -> str:
        return (
            f"evaluated={self.evaluated} signals={len(self.signals)} duplicates={self.duplicates} "
            f"skipped={len(self.skipped)} errors={len(self.errors)} expired={self.expired}"
        )


def validate_candles(df: pd.DataFrame, symbol: str, timeframe: str) -> pd.DataFrame:
    """Raise DataError on empty, malformed or unordered candles."""
    if df is None or df.empty:
        raise DataError(f"{symbol} {timeframe}: no candles")
    missing = [c for c in ("time", "open", "high", "low", "close", "volume") if c not in df.columns]
    if missing:
        raise DataError(f"{symbol} {timeframe}: missing candle columns {missing}")
    ohlcv = df[["open", "high", "low", "close", "volume"]]
    if ohlcv.isna().any().any():
        raise DataError(f"{symbol} {timeframe}: NaN in candle data")
    if (df["high"] < df["low"]).any():
        raise DataError(f"{symbol} {timeframe}: candle with high < low")
    if not pd.Series(df["time"]).is_monotonic_increasing or df["time"].duplicated().any():
        raise DataError(f"{symbol} {timeframe}: candle times not strictly ascending")
    return df


def drop_forming(df: pd.DataFrame, timeframe: str, now: datetime) -> pd.DataFrame:
    """Drop the last bar if it has not closed by `now`."""
    if df.empty:
        return df
    last_close = pd.Timestamp(df["time"].iloc[-1]) + timeframe_delta(timeframe)
    if last_close > pd.Timestamp(now):
        return df.iloc[:-1]
    return df


class ScanOrchestrator:
    def __init__(
        self,
        client: ExchangeClient,
        strategies: Mapping[str, BaseStrategy],
        signals: SignalStore,
        symbols: Sequence[str],
        candle_limit: int = 300,
        max_workers: int = 4,
        batch_delay_s: float = 0.2,
        drop_forming_bar: bool = True,
        on_signal: Optional[Callable[[PersistedSignal], object]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.strategies = dict(strategies)
        self.signals = signals
        self.symbols = list(symbols)
        self.candle_limit = candle_limit
        self.max_workers = max(1, max_workers)
        self.batch_delay_s = batch_delay_s
        self.drop_forming_bar = drop_forming_bar
        self.on_signal = on_signal
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: ExchangeClient,
        cooldown: CooldownStore,
        signals: SignalStore,
        on_signal: Optional[Callable[[PersistedSignal], object]] = None,
    ) -> "ScanOrchestrator":
        strategies = {tf: CrossoverStrategy(config.rule_config(tf), cooldown) for tf in config.timeframes}
        return cls(
            client,
            strategies,
            signals,
            config.scan_symbols(),
            candle_limit=config.candle_limit,
            max_workers=config.max_workers,
            batch_delay_s=config.batch_delay_s,
            drop_forming_bar=config.drop_forming_bar,
            on_signal=on_signal,
        )

    def jobs(self) -> List[Tuple[str, str]]:
        return [(symbol, tf) for symbol in self.symbols for tf in self.strategies]

    @staticmethod
    def _batches(jobs: List[Tuple[str, str]], size: int) -> Iterable[List[Tuple[str, str]]]:
        for i in range(0, len(jobs), size):
            yield jobs[i:i + size]

    def scan_one(self, symbol: str, timeframe: str, now: datetime):
        """Evaluate one symbol/timeframe. Returns PersistedSignal, None, or the duplicate marker."""
        strategy = self.strategies[timeframe]
        df = self.client.get_klines(symbol, timeframe, self.candle_limit)
        df = validate_candles(df, symbol, timeframe)
        if self.drop_forming_bar:
            df = drop_forming(df, timeframe, now)
        candidate = strategy.get_signal(df, symbol, timeframe, now)
        if candidate is None:
            return None
        result = self.signals.insert(candidate)
        if not result.ok:
            if result.code == DUPLICATE:
                return _DUPLICATE
            raise DataError(f"{symbol} {timeframe}: signal insert failed: {result.message}")
        return result.value

    def scan(self, now: Optional[datetime] = None) -> ScanReport:
        now = now or datetime.now(timezone.utc)
        report = ScanReport(started_at=now)
        report.expired = self.signals.expire_stale(now)
        jobs = self.jobs()
        logger.info("Scan started: %d symbols x %d timeframes", len(self.symbols), len(self.strategies))

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="scan") as pool:
            for n, batch in enumerate(self._batches(jobs, self.max_workers)):
                if n > 0 and self.batch_delay_s > 0:
                    self._sleep(self.batch_delay_s)
                futures = {pool.submit(self.scan_one, symbol, tf, now): (symbol, tf) for symbol, tf in batch}
                accepted: List[PersistedSignal] = []
                for fut in as_completed(futures):
                    symbol, tf = futures[fut]
                    label = f"{symbol} {tf}"
                    try:
                        outcome = fut.result()
                    except InfrastructureError:
                        logger.error("Scan aborted at %s: shared infrastructure failure", label)
                        raise
                    except DataError as e:
                        report.skipped[label] = str(e)
                        logger.warning("Skipping %s: %s", label, e)
                        continue
                    except Exception as e:
                        report.errors[label] = f"{type(e).__name__}: {e}"
                        logger.exception("Unexpected error evaluating %s", label)
                        continue
                    report.evaluated += 1
                    if outcome is _DUPLICATE:
                        report.duplicates += 1
                        logger.info("%s: signal already recorded", label)
                    elif outcome is not None:
                        accepted.append(outcome)
                        logger.info(
                            "SIGNAL %s %s %s entry=%.6g sl=%.6g tp=%.6g conf=%.1f grade=%s",
                            outcome.symbol, outcome.timeframe, outcome.direction.value,
                            outcome.entry_price, outcome.stop_loss, outcome.take_profit,
                            outcome.confidence, outcome.grade.value,
                        )
                report.signals.extend(accepted)
                if self.on_signal is not None:
                    for signal in accepted:
                        self._dispatch(signal)

        report.finished_at = datetime.now(timezone.utc)
        logger.info("Scan finished: %s", report.summary())
        return report

    def _dispatch(self, signal: PersistedSignal) -> None:
        try:
            self.on_signal(signal)
        except InfrastructureError:
            raise
        except Exception:
            logger.exception("Signal handler failed for signal %s", signal.id)
