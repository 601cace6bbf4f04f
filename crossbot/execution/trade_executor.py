"""Trade execution against the account, portfolio and ledger stores."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from crossbot.core.models import (
    DUST_THRESHOLD, BotMode, Position, Trade, TradeType, utc_now
)
from crossbot.storage.database import Database

logger = structlog.get_logger(__name__)


class TradeRejected(ValueError):
    """Raised when a trade would violate a portfolio invariant.

    Raised before any store mutation, so a rejected trade leaves no trace.
    """


def weighted_average_cost(
    old_quantity: Decimal,
    old_average_cost: Decimal,
    added_quantity: Decimal,
    price: Decimal,
) -> Decimal:
    """Average cost after buying added_quantity at price on top of a holding."""
    total_quantity = old_quantity + added_quantity
    if total_quantity <= 0:
        raise ValueError("Resulting quantity must be positive")
    return (old_quantity * old_average_cost + added_quantity * price) / total_quantity


def realized_profit_loss(
    quantity: Decimal, price: Decimal, average_cost: Decimal
) -> Decimal:
    """Profit (or loss, when negative) of selling quantity at price."""
    return quantity * (price - average_cost)


def position_after_buy(
    position: Optional[Position],
    symbol: str,
    mode: BotMode,
    quantity: Decimal,
    price: Decimal,
) -> Position:
    if position is None:
        return Position(symbol=symbol, mode=mode, quantity=quantity, average_cost=price)
    return Position(
        symbol=symbol,
        mode=mode,
        quantity=position.quantity + quantity,
        average_cost=weighted_average_cost(
            position.quantity, position.average_cost, quantity, price
        ),
    )


class TradeExecutor:
    """
    Applies decided trades to the stores.

    Each apply() runs inside one Database.transaction(): the balance change,
    the position change and the ledger entry commit together or not at all.
    """

    def __init__(self, database: Database):
        self.database = database
        self.trades_executed = 0
        self.realized_pnl = Decimal("0")

    async def apply(
        self,
        trade_type: TradeType,
        quantity: Decimal,
        price: Decimal,
        symbol: str,
        mode: BotMode,
        timestamp: Optional[datetime] = None,
    ) -> Trade:
        """
        Execute a BUY or SELL and record it in the ledger.

        Args:
            trade_type: BUY or SELL
            quantity: Units to trade
            price: Execution price
            symbol: Asset symbol
            mode: Book to apply the trade to
            timestamp: Trade time (simulated time in TRAINING)

        Returns:
            The recorded Trade

        Raises:
            TradeRejected: If the trade violates a portfolio invariant
        """
        timestamp = timestamp or utc_now()
        if price <= 0:
            raise TradeRejected(f"Price must be positive, got {price}")
        if quantity <= 0:
            raise TradeRejected(f"Quantity must be positive, got {quantity}")

        total_value = quantity * price
        profit_loss = Decimal("0")

        async with self.database.transaction() as tx:
            position = await tx.get_position(symbol, mode)

            if trade_type == TradeType.BUY:
                if quantity <= DUST_THRESHOLD:
                    raise TradeRejected(f"Quantity {quantity} is below the dust threshold")

                await tx.adjust_balance(mode, -total_value)
                await tx.save_position(
                    position_after_buy(position, symbol, mode, quantity, price)
                )
            else:
                if position is None or position.quantity <= 0:
                    raise TradeRejected(f"No {symbol} position to sell in {mode.value}")
                if quantity > position.quantity:
                    raise TradeRejected(
                        f"Cannot sell {quantity} {symbol}, holding {position.quantity}"
                    )

                profit_loss = realized_profit_loss(quantity, price, position.average_cost)
                await tx.adjust_balance(mode, total_value)

                remaining = Position(
                    symbol=symbol,
                    mode=mode,
                    quantity=position.quantity - quantity,
                    average_cost=position.average_cost,
                )
                if remaining.is_dust:
                    await tx.delete_position(symbol, mode)
                else:
                    await tx.save_position(remaining)

            trade = Trade(
                symbol=symbol,
                trade_type=trade_type,
                quantity=quantity,
                price=price,
                total_value=total_value,
                profit_loss=profit_loss,
                timestamp=timestamp,
                mode=mode,
            )
            await tx.append_trade(trade)

        self.trades_executed += 1
        self.realized_pnl += profit_loss

        logger.info(
            "executor.trade_applied",
            trade_type=trade_type.value,
            symbol=symbol,
            mode=mode.value,
            quantity=str(quantity),
            price=str(price),
            total_value=str(total_value),
            profit_loss=str(profit_loss),
        )
        return trade
