"""Build current/previous IndicatorSnapshots from an indicator DataFrame."""

from __future__ import annotations
from typing import Iterable, Tuple

import pandas as pd

from signal_trader.core.types import IndicatorSnapshot, Result

NOT_READY = "NOT_READY"


def _row_snapshot(row: pd.Series, symbol: str, timeframe: str, columns: Iterable[str]) -> IndicatorSnapshot:
    values = {name: float(row[name]) for name in columns}
    return IndicatorSnapshot(
        symbol=symbol,
        timeframe=timeframe,
        bar_time=pd.Timestamp(row["time"]).to_pydatetime(),
        values=values,
    )


def build_snapshots(
    df: pd.DataFrame,
    symbol: str,
    timeframe: str,
    columns: Iterable[str],
) -> Result[Tuple[IndicatorSnapshot, IndicatorSnapshot]]:
    """
    Snapshot the last two rows of `df` (previous, current).
    Fails with NOT_READY if fewer than two rows exist or any requested column is
    NaN on either row; never substitutes zeros.
    """
    columns = list(columns)
    if len(df) < 2:
        return Result.failure(NOT_READY, f"{symbol} {timeframe}: need 2 bars, have {len(df)}")
    missing = [c for c in columns if c not in df.columns]
    if missing:
        return Result.failure(NOT_READY, f"{symbol} {timeframe}: missing columns {missing}")
    tail = df.iloc[-2:]
    not_ready = [c for c in columns if tail[c].isna().any()]
    if not_ready:
        return Result.failure(
            NOT_READY,
            f"{symbol} {timeframe}: indicators not ready: {', '.join(sorted(not_ready))}",
            hint="fetch more history",
        )
    previous = _row_snapshot(tail.iloc[0], symbol, timeframe, columns)
    current = _row_snapshot(tail.iloc[1], symbol, timeframe, columns)
    return Result.success((previous, current))
