"""Strategies: base interface and the crossover rule evaluator."""

from signal_trader.strategies.base import BaseStrategy
from signal_trader.strategies.crossover import (
    CrossoverStrategy,
    score_confidence,
    grade_signal,
    pick_direction,
)

__all__ = ["BaseStrategy", "CrossoverStrategy", "score_confidence", "grade_signal", "pick_direction"]
