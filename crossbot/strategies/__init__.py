"""Trading strategies for crossbot."""

from crossbot.strategies.base import BaseStrategy
from crossbot.strategies.ma_crossover import MovingAverageCrossoverStrategy, decide

__all__ = [
    "BaseStrategy",
    "MovingAverageCrossoverStrategy",
    "decide",
]
