"""
Indicator functions over pandas Series / OHLCV DataFrames.

Every function returns a Series aligned by index with its input. Positions
before the lookback is satisfied are NaN, which means "not ready"; use
`latest()` to read the last value as Optional[float].
No lookahead: value i depends only on rows <= i.
"""

from __future__ import annotations
from typing import Optional

import numpy as np
import pandas as pd


def latest(series: pd.Series) -> Optional[float]:
    """Last value of a series, or None if empty or not ready."""
    if series is None or len(series) == 0:
        return None
    value = series.iloc[-1]
    if pd.isna(value):
        return None
    return float(value)


def sma(values: pd.Series, period: int) -> pd.Series:
    return values.rolling(period, min_periods=period).mean()


def ema(values: pd.Series, period: int) -> pd.Series:
    """
    EMA seeded with the first value: ema[i] = v[i]*k + ema[i-1]*(1-k), k = 2/(period+1).
    Values before `period` observations are masked as not ready.
    """
    return values.ewm(span=period, adjust=False, min_periods=period).mean()


def true_range(df: pd.DataFrame) -> pd.Series:
    prev_close = df["close"].shift()
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - prev_close).abs()
    low_close = (df["low"] - prev_close).abs()
    tr = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1, skipna=False)
    return tr


def atr(df: pd.DataFrame, period: int) -> pd.Series:
    """Mean of true range over `period` bars (first bar has no previous close)."""
    return sma(true_range(df), period)


def rsi(close: pd.Series, period: int) -> pd.Series:
    """Wilder RSI. 100 when the average loss is zero."""
    delta = close.diff()
    gain = delta.clip(lower=0)
    loss = (-delta).clip(lower=0)
    avg_gain = gain.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / avg_loss.replace(0, np.nan)
    out = 100 - (100 / (1 + rs))
    out = out.where(avg_loss != 0, 100.0)
    return out.where(avg_gain.notna() & avg_loss.notna())


def dmi(df: pd.DataFrame, period: int) -> pd.DataFrame:
    """
    +DI, -DI and ADX with simple-moving-average smoothing of TR, +DM, -DM and DX.
    Returns columns plus_di, minus_di, adx.
    """
    up_move = df["high"].diff()
    down_move = -df["low"].diff()
    plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
    minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)
    plus_dm[up_move.isna()] = np.nan
    minus_dm[down_move.isna()] = np.nan

    tr_avg = sma(true_range(df), period).replace(0, np.nan)
    plus_di = 100 * sma(plus_dm, period) / tr_avg
    minus_di = 100 * sma(minus_dm, period) / tr_avg
    di_sum = (plus_di + minus_di).replace(0, np.nan)
    dx = 100 * (plus_di - minus_di).abs() / di_sum
    adx = sma(dx, period)
    return pd.DataFrame({"plus_di": plus_di, "minus_di": minus_di, "adx": adx})


def stochastic(df: pd.DataFrame, k_period: int, d_period: int = 3, smooth_k: int = 1) -> pd.DataFrame:
    """%K over k_period (50 when the range is flat), %D = SMA(%K, d_period)."""
    highest = df["high"].rolling(k_period, min_periods=k_period).max()
    lowest = df["low"].rolling(k_period, min_periods=k_period).min()
    rng = highest - lowest
    raw_k = 100 * (df["close"] - lowest) / rng.replace(0, np.nan)
    raw_k = raw_k.where(rng != 0, 50.0).where(rng.notna())
    k = sma(raw_k, smooth_k) if smooth_k > 1 else raw_k
    d = sma(k, d_period)
    return pd.DataFrame({"stoch_k": k, "stoch_d": d})


def bollinger(close: pd.Series, period: int = 20, num_std: float = 2.0) -> pd.DataFrame:
    middle = sma(close, period)
    std = close.rolling(period, min_periods=period).std(ddof=0)
    return pd.DataFrame({
        "bb_upper": middle + num_std * std,
        "bb_middle": middle,
        "bb_lower": middle - num_std * std,
    })


def volume_average(volume: pd.Series, period: int) -> pd.Series:
    return sma(volume, period)


def historical_volatility(close: pd.Series, window: int) -> pd.Series:
    """Population std of log returns over `window` returns."""
    log_ret = np.log(close / close.shift())
    return log_ret.rolling(window, min_periods=window).std(ddof=0)


def hvp(close: pd.Series, vol_window: int = 20, lookback: int = 252) -> pd.Series:
    """
    Historical volatility percentile: share of the trailing `lookback` volatility
    estimates (current one included) that are <= the current estimate, in [0, 100].
    """
    vol = historical_volatility(close, vol_window)

    def _rank(window: np.ndarray) -> float:
        return float((window <= window[-1]).sum()) / len(window) * 100.0

    return vol.rolling(lookback, min_periods=lookback).apply(_rank, raw=True)


def crossed_above(fast_prev: float, slow_prev: float, fast_now: float, slow_now: float) -> bool:
    """Strict cross: relation changed from <= to > between consecutive bars."""
    return fast_prev <= slow_prev and fast_now > slow_now


def crossed_below(fast_prev: float, slow_prev: float, fast_now: float, slow_now: float) -> bool:
    return fast_prev >= slow_prev and fast_now < slow_now
