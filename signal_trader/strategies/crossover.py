"""
Moving-average crossover strategy with volume and volatility-regime filters.

Primary conditions (all required): strict fast/slow MA cross in the signal's
direction, volume at or above `volume_multiplier` x its average, and an HVP
regime check. Stochastic and DMI confirmations are optional; when enabled they
veto signals they do not confirm. Stops and targets are ATR multiples.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from signal_trader.core.config import RuleConfig
from signal_trader.core.errors import DataError
from signal_trader.core.types import Direction, Grade, IndicatorSnapshot, SignalCandidate
from signal_trader.indicators import library as ind
from signal_trader.indicators.snapshot import build_snapshots
from signal_trader.store.cooldown import CooldownStore
from signal_trader.strategies.base import BaseStrategy
from signal_trader.utils.timeframes import timeframe_delta

logger = logging.getLogger("signal_trader.strategies.crossover")

DIAGNOSTIC_COLUMNS = (
    "atr", "hvp", "hvp_ma", "volume_ratio", "rsi",
    "bb_upper", "bb_middle", "bb_lower",
    "stoch_k", "stoch_d", "plus_di", "minus_di", "adx",
)


def score_confidence(
    rules: RuleConfig,
    volume_ratio: float,
    hvp: float,
    stochastic_confirmed: bool = False,
    dmi_confirmed: bool = False,
) -> float:
    """
    base + volume bonus + volatility bonus + confirmation bonuses,
    rounded to 0.1 and clamped to [base_confidence, max_confidence].
    """
    score = rules.base_confidence
    if volume_ratio > rules.volume_multiplier:
        score += min(rules.volume_bonus_max, (volume_ratio - rules.volume_multiplier) * rules.volume_bonus_scale)
    if hvp > rules.hvp_threshold:
        score += min(rules.volatility_bonus_max, (hvp - rules.hvp_threshold) / rules.volatility_bonus_divisor)
    if stochastic_confirmed:
        score += rules.stochastic_bonus
    if dmi_confirmed:
        score += rules.dmi_bonus
    score = round(score, 1)
    return max(rules.base_confidence, min(rules.max_confidence, score))


def grade_signal(confidence: float, risk_reward: float, tiers: Iterable[Tuple[str, float, float]]) -> Grade:
    """First tier whose confidence and risk/reward minimums are both met; C otherwise."""
    for grade, min_confidence, min_rr in tiers:
        if confidence >= min_confidence and risk_reward >= min_rr:
            return Grade(grade)
    return Grade.C


def pick_direction(eligible: Mapping[Direction, bool], priority: Iterable[str]) -> Optional[Direction]:
    """First eligible direction in priority order."""
    for name in priority:
        direction = Direction(name)
        if eligible.get(direction):
            return direction
    return None


class CrossoverStrategy(BaseStrategy):
    """Rule evaluator for one timeframe's RuleConfig. Cooldown store is shared across timeframes."""

    def __init__(self, rules: RuleConfig, cooldown: CooldownStore):
        self.rules = rules
        self.cooldown = cooldown

    def required_bars(self) -> int:
        r = self.rules
        # +1: the previous bar must be ready too
        return max(
            r.slow_period,
            r.fast_period,
            r.volume_ma_period,
            r.hvp_window + r.hvp_lookback + r.hvp_ma_period - 1,
            r.atr_period + 1,
            r.dmi_period * 2,
            r.stoch_k_period + r.stoch_smooth_k + r.stoch_d_period - 2,
            r.rsi_period + 1,
            r.bb_period,
        ) + 1

    def snapshot_columns(self) -> List[str]:
        skip = set()
        if not self.rules.use_stochastic:
            skip.update(("stoch_k", "stoch_d"))
        if not self.rules.use_dmi:
            skip.update(("plus_di", "minus_di", "adx"))
        return ["close", "volume", "fast_ma", "slow_ma", "volume_ma"] + [
            c for c in DIAGNOSTIC_COLUMNS if c not in skip
        ]

    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        r = self.rules
        df = df.copy()
        ma = {"ema": ind.ema, "sma": ind.sma}
        df["fast_ma"] = ma[r.fast_ma_type](df["close"], r.fast_period)
        df["slow_ma"] = ma[r.slow_ma_type](df["close"], r.slow_period)
        df["volume_ma"] = ind.volume_average(df["volume"], r.volume_ma_period)
        df["volume_ratio"] = df["volume"] / df["volume_ma"].where(df["volume_ma"] > 0)
        df["hvp"] = ind.hvp(df["close"], r.hvp_window, r.hvp_lookback)
        df["hvp_ma"] = ind.sma(df["hvp"], r.hvp_ma_period)
        df["atr"] = ind.atr(df, r.atr_period)
        df["rsi"] = ind.rsi(df["close"], r.rsi_period)
        df = df.join(ind.bollinger(df["close"], r.bb_period, r.bb_std))
        df = df.join(ind.stochastic(df, r.stoch_k_period, r.stoch_d_period, r.stoch_smooth_k))
        df = df.join(ind.dmi(df, r.dmi_period))
        return df

    def conditions(
        self,
        direction: Direction,
        previous: IndicatorSnapshot,
        current: IndicatorSnapshot,
    ) -> Tuple[Dict[str, bool], Dict[str, bool]]:
        """(primary conditions, enabled optional confirmations) for one direction."""
        r = self.rules
        long = direction is Direction.LONG
        cross = ind.crossed_above if long else ind.crossed_below
        hvp_above = current["hvp"] > r.hvp_threshold
        hvp_rising = current["hvp"] > current["hvp_ma"]
        regime = {"threshold": hvp_above, "average": hvp_rising, "either": hvp_above or hvp_rising}[r.hvp_mode]
        primary = {
            "trend_cross": cross(previous["fast_ma"], previous["slow_ma"], current["fast_ma"], current["slow_ma"]),
            "volume_confirmed": current["volume_ratio"] >= r.volume_multiplier,
            "volatility_regime": bool(regime),
        }
        optional: Dict[str, bool] = {}
        if r.use_stochastic:
            k_cross = cross(previous["stoch_k"], previous["stoch_d"], current["stoch_k"], current["stoch_d"])
            if long:
                outside_zone = current["stoch_k"] < r.stoch_overbought
            else:
                outside_zone = current["stoch_k"] > r.stoch_oversold
            optional["stochastic"] = k_cross and outside_zone
        if r.use_dmi:
            di_favours = current["plus_di"] > current["minus_di"] if long else current["minus_di"] > current["plus_di"]
            optional["dmi"] = current["adx"] > r.adx_threshold and di_favours
        return primary, optional

    def evaluate(
        self,
        previous: IndicatorSnapshot,
        current: IndicatorSnapshot,
        now: Optional[datetime] = None,
    ) -> Optional[SignalCandidate]:
        """
        Evaluate one bar. The cooldown entry is acquired last, only for a
        candidate that passed every other check.
        """
        if not previous.comparable_with(current):
            raise ValueError(
                f"Snapshots from different series: {previous.symbol}/{previous.timeframe} "
                f"vs {current.symbol}/{current.timeframe}"
            )
        r = self.rules
        now = now or datetime.now(timezone.utc)
        checks = {d: self.conditions(d, previous, current) for d in Direction}
        eligible = {
            d: all(primary.values()) and all(optional.values())
            for d, (primary, optional) in checks.items()
        }
        direction = pick_direction(eligible, r.direction_priority)
        if direction is None:
            return None
        primary, optional = checks[direction]

        entry = current["close"]
        atr = current["atr"]
        if atr <= 0:
            logger.debug("%s %s: ATR is zero, no stop distance", current.symbol, current.timeframe)
            return None
        if direction is Direction.LONG:
            stop_loss = entry - atr * r.atr_stop_mult
            take_profit = entry + atr * r.atr_tp_mult
        else:
            stop_loss = entry + atr * r.atr_stop_mult
            take_profit = entry - atr * r.atr_tp_mult
        risk = abs(entry - stop_loss)
        reward = abs(take_profit - entry)
        risk_reward = round(reward / risk, 4)
        if risk_reward < r.min_risk_reward:
            logger.debug(
                "%s %s %s: R:R %.2f below %.2f",
                current.symbol, current.timeframe, direction.value, risk_reward, r.min_risk_reward,
            )
            return None

        confidence = score_confidence(
            r,
            current["volume_ratio"],
            current["hvp"],
            stochastic_confirmed=optional.get("stochastic", False),
            dmi_confirmed=optional.get("dmi", False),
        )
        grade = grade_signal(confidence, risk_reward, r.grade_tiers)

        window = pd.Timedelta(minutes=r.cooldown_minutes).to_pytimedelta()
        if not self.cooldown.try_acquire(current.symbol, direction, now, window):
            logger.info("%s %s %s: in cooldown", current.symbol, current.timeframe, direction.value)
            return None

        return SignalCandidate(
            symbol=current.symbol,
            timeframe=current.timeframe,
            direction=direction,
            entry_price=entry,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=confidence,
            grade=grade,
            risk_reward=risk_reward,
            bar_time=current.bar_time,
            created_at=now,
            expires_at=now + timeframe_delta(current.timeframe) * r.signal_ttl_bars,
            primary_conditions=primary,
            optional_confirmations=optional,
            indicators={k: current[k] for k in DIAGNOSTIC_COLUMNS if k in current.values},
        )

    def get_signal(
        self,
        df: pd.DataFrame,
        symbol: str,
        timeframe: str,
        now: Optional[datetime] = None,
    ) -> Optional[SignalCandidate]:
        needed = self.required_bars()
        if len(df) < needed:
            raise DataError(f"{symbol} {timeframe}: insufficient history ({len(df)} < {needed} bars)")
        result = build_snapshots(self.compute_indicators(df), symbol, timeframe, self.snapshot_columns())
        if not result.ok:
            raise DataError(result.message)
        previous, current = result.value
        return self.evaluate(previous, current, now)
