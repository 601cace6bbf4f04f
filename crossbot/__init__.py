"""Crossbot - moving-average crossover trading bot with TRAINING and LIVE modes."""

__version__ = "1.0.0"
