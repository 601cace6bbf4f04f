"""Moving-average crossover strategy."""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from crossbot.core.models import (
    DUST_THRESHOLD, BotMode, SignalType, Trade, TradeDecision, TradeType
)
from crossbot.execution.trade_executor import TradeExecutor, TradeRejected
from crossbot.storage.database import Database
from crossbot.strategies.base import BaseStrategy

QUANTITY_PRECISION = Decimal("0.00000001")


def decide(
    short_ma: Decimal,
    long_ma: Decimal,
    position_quantity: Decimal,
    balance: Decimal,
    current_price: Decimal,
    trade_percentage: Decimal,
) -> TradeDecision:
    """
    Pure crossover decision.

    BUY a trade_percentage slice of the balance when the short average is
    strictly above the long one and nothing is held; SELL the whole holding
    when it is strictly below. Anything else holds.
    """
    if short_ma > long_ma and position_quantity == 0:
        trade_value = balance * trade_percentage
        quantity = (trade_value / current_price).quantize(
            QUANTITY_PRECISION, rounding=ROUND_HALF_UP
        )
        if quantity <= DUST_THRESHOLD:
            return TradeDecision.hold("insufficient_capital")
        return TradeDecision(
            signal=SignalType.BUY,
            quantity=quantity,
            price=current_price,
            reason="short_ma_above_long_ma",
        )

    if short_ma < long_ma and position_quantity > 0:
        return TradeDecision(
            signal=SignalType.SELL,
            quantity=position_quantity,
            price=current_price,
            reason="short_ma_below_long_ma",
        )

    return TradeDecision.hold("no_crossover")


class MovingAverageCrossoverStrategy(BaseStrategy):
    """
    Trades one symbol on short/long simple moving-average crossovers.

    Reads price history, balance and position of the evaluated mode only,
    so the TRAINING and LIVE books never influence each other.
    """

    def __init__(
        self,
        database: Database,
        executor: TradeExecutor,
        symbol: str,
        short_ma_period: int,
        long_ma_period: int,
        trade_percentage: Decimal,
        name: str = "MA-CROSSOVER",
    ):
        super().__init__(
            name=name,
            symbol=symbol,
            short_ma_period=short_ma_period,
            long_ma_period=long_ma_period,
            trade_percentage=str(trade_percentage),
        )
        if short_ma_period >= long_ma_period:
            raise ValueError("short_ma_period must be smaller than long_ma_period")

        self.database = database
        self.executor = executor
        self.short_ma_period = short_ma_period
        self.long_ma_period = long_ma_period
        self.trade_percentage = trade_percentage

    async def evaluate(
        self,
        symbol: str,
        mode: BotMode,
        current_price: Decimal,
        timestamp: datetime,
    ) -> Optional[Trade]:
        if not self.is_active:
            return None

        short_ma = await self.database.moving_average(symbol, mode, self.short_ma_period)
        long_ma = await self.database.moving_average(symbol, mode, self.long_ma_period)
        if short_ma is None or long_ma is None:
            self.logger.debug("strategy.insufficient_history", mode=mode.value)
            return None

        position = await self.database.get_position(symbol, mode)
        position_quantity = position.quantity if position else Decimal("0")
        balance = await self.database.get_balance(mode)

        decision = decide(
            short_ma, long_ma, position_quantity, balance,
            current_price, self.trade_percentage,
        )
        if not decision.is_trade:
            return None

        self.signals_generated += 1
        self.logger.info(
            "strategy.signal",
            signal=decision.signal.value,
            mode=mode.value,
            short_ma=str(short_ma),
            long_ma=str(long_ma),
            quantity=str(decision.quantity),
            price=str(current_price),
        )

        try:
            trade = await self.executor.apply(
                TradeType(decision.signal.value),
                decision.quantity,
                current_price,
                symbol,
                mode,
                timestamp,
            )
        except TradeRejected as e:
            self.logger.warning("strategy.trade_rejected", mode=mode.value, reason=str(e))
            return None

        self.trades_executed += 1
        self.total_pnl += trade.profit_loss
        return trade

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            'short_ma_period': self.short_ma_period,
            'long_ma_period': self.long_ma_period,
            'trade_percentage': str(self.trade_percentage),
        })
        return stats
