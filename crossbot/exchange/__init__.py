"""Live price feed integration."""

from crossbot.exchange.price_source import CcxtPriceSource, PriceSource

__all__ = [
    "PriceSource",
    "CcxtPriceSource",
]
