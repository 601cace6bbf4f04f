"""Trade execution.

Applies BUY/SELL decisions to the account, portfolio and trade ledger as a
single transaction, and exposes the pure accounting helpers:
- weighted_average_cost: average cost after adding to a position
- realized_profit_loss: P&L of selling at a price
"""

from crossbot.execution.trade_executor import (
    TradeExecutor,
    TradeRejected,
    position_after_buy,
    realized_profit_loss,
    weighted_average_cost,
)

__all__ = [
    'TradeExecutor',
    'TradeRejected',
    'position_after_buy',
    'realized_profit_loss',
    'weighted_average_cost',
]
