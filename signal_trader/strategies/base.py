"""Abstract strategy: indicators + signal generation."""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd

from signal_trader.core.types import SignalCandidate


class BaseStrategy(ABC):
    """Strategy computes indicators and may return a SignalCandidate for the last bar."""

    @abstractmethod
    def required_bars(self) -> int:
        """Minimum candles before every indicator the strategy reads is ready."""

    @abstractmethod
    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add indicator columns to OHLCV DataFrame. No lookahead."""

    @abstractmethod
    def get_signal(
        self,
        df: pd.DataFrame,
        symbol: str,
        timeframe: str,
        now: Optional[datetime] = None,
    ) -> Optional[SignalCandidate]:
        """
        Return a SignalCandidate for the last row of `df` or None.
        Raises DataError when the series is too short or indicators are not ready.
        """
