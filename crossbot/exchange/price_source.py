"""Live price feed for the LIVE mode.

The feed is a public ccxt ticker (no API keys needed). Any failure is
reported as a missing price so the trading loop simply skips the tick.
"""
import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional

import ccxt.async_support as ccxt
import structlog

from crossbot.core.config import price_feed_config

logger = structlog.get_logger(__name__)


class PriceSource(ABC):
    """Produces the current market price of the managed symbol."""

    @abstractmethod
    async def fetch_current(self) -> Optional[Decimal]:
        """Return the current price, or None on any failure. Never raises."""
        pass

    async def close(self):
        """Release network resources."""


class CcxtPriceSource(PriceSource):
    """Price source backed by a ccxt exchange's public ticker."""

    def __init__(
        self,
        exchange_id: Optional[str] = None,
        market_symbol: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.exchange_id = exchange_id or price_feed_config.exchange_id
        self.market_symbol = market_symbol or price_feed_config.market_symbol
        self.timeout_seconds = timeout_seconds or price_feed_config.timeout_seconds

        exchange_class = getattr(ccxt, self.exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"Unknown ccxt exchange: {self.exchange_id}")

        self.exchange = exchange_class({
            'enableRateLimit': True,
            'timeout': int(self.timeout_seconds * 1000),
        })
        self.failures = 0

    async def fetch_current(self) -> Optional[Decimal]:
        try:
            ticker = await asyncio.wait_for(
                self.exchange.fetch_ticker(self.market_symbol),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.failures += 1
            logger.warning(
                "price_source.timeout",
                exchange=self.exchange_id,
                market=self.market_symbol,
                timeout=self.timeout_seconds,
            )
            return None
        except Exception as e:
            self.failures += 1
            logger.warning(
                "price_source.fetch_failed",
                exchange=self.exchange_id,
                market=self.market_symbol,
                error=str(e),
            )
            return None

        return self._parse_price(ticker)

    def _parse_price(self, ticker) -> Optional[Decimal]:
        last = ticker.get('last') if ticker else None
        if last is None:
            logger.warning("price_source.no_last_price", market=self.market_symbol)
            return None

        try:
            price = Decimal(str(last))
        except InvalidOperation:
            logger.warning("price_source.invalid_price", value=str(last))
            return None

        if price <= 0:
            logger.warning("price_source.non_positive_price", price=str(price))
            return None
        return price

    async def close(self):
        await self.exchange.close()
