"""Base class for trading strategies."""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from crossbot.core.models import BotMode, Trade

logger = structlog.get_logger(__name__)


class BaseStrategy(ABC):
    """Abstract base class for trading strategies."""

    def __init__(self, name: str, symbol: str, **kwargs):
        self.name = name
        self.symbol = symbol
        self.params = kwargs
        self.is_active = True
        self.logger = logger.bind(strategy=name, symbol=symbol)

        # Track strategy performance
        self.signals_generated = 0
        self.trades_executed = 0
        self.total_pnl = Decimal("0")

    @abstractmethod
    async def evaluate(
        self,
        symbol: str,
        mode: BotMode,
        current_price: Decimal,
        timestamp: datetime,
    ) -> Optional[Trade]:
        """
        Evaluate the market at current_price and trade if a signal fires.

        Args:
            symbol: Asset symbol
            mode: Book to read history from and trade in
            current_price: Price of the tick being evaluated
            timestamp: Time of the tick

        Returns:
            The executed Trade, or None when holding
        """
        pass

    def get_stats(self) -> Dict[str, Any]:
        """Get strategy statistics."""
        return {
            'name': self.name,
            'symbol': self.symbol,
            'is_active': self.is_active,
            'signals_generated': self.signals_generated,
            'trades_executed': self.trades_executed,
            'total_pnl': str(self.total_pnl)
        }

    def pause(self):
        """Pause the strategy."""
        self.is_active = False
        self.logger.info("strategy.paused")

    def resume(self):
        """Resume the strategy."""
        self.is_active = True
        self.logger.info("strategy.resumed")
