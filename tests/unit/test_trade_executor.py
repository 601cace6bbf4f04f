"""Unit tests for the trade executor and its accounting helpers."""
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from crossbot.core.models import DUST_THRESHOLD, BotMode, Position, TradeType
from crossbot.execution.trade_executor import (
    TradeRejected,
    position_after_buy,
    realized_profit_loss,
    weighted_average_cost,
)
from crossbot.storage.database import AccountModel, LedgerTransaction

TS = datetime(2024, 1, 1, 12, 0, 0)


# =============================================================================
# Pure Accounting Functions
# =============================================================================

class TestWeightedAverageCost:
    """Average cost recomputation on BUY."""

    def test_equal_quantities_average_the_prices(self):
        assert weighted_average_cost(
            Decimal("1"), Decimal("100"), Decimal("1"), Decimal("200")
        ) == Decimal("150")

    def test_weights_by_quantity(self):
        # 3 @ 100 + 1 @ 200 -> 500 / 4
        assert weighted_average_cost(
            Decimal("3"), Decimal("100"), Decimal("1"), Decimal("200")
        ) == Decimal("125")

    def test_result_lies_between_old_cost_and_price(self):
        cost = weighted_average_cost(
            Decimal("0.7"), Decimal("48000"), Decimal("0.2"), Decimal("52000")
        )
        assert Decimal("48000") < cost < Decimal("52000")

    def test_empty_holding_takes_trade_price(self):
        assert weighted_average_cost(
            Decimal("0"), Decimal("0"), Decimal("2"), Decimal("300")
        ) == Decimal("300")

    def test_zero_total_quantity_rejected(self):
        with pytest.raises(ValueError):
            weighted_average_cost(Decimal("0"), Decimal("0"), Decimal("0"), Decimal("1"))


class TestRealizedProfitLoss:
    """P&L of a SELL."""

    def test_profit(self):
        assert realized_profit_loss(
            Decimal("10"), Decimal("120"), Decimal("100")
        ) == Decimal("200")

    def test_loss(self):
        assert realized_profit_loss(
            Decimal("2"), Decimal("90"), Decimal("100")
        ) == Decimal("-20")

    def test_break_even(self):
        assert realized_profit_loss(
            Decimal("5"), Decimal("100"), Decimal("100")
        ) == Decimal("0")


class TestPositionAfterBuy:

    def test_opens_new_position(self):
        position = position_after_buy(
            None, "BTC", BotMode.TRAINING, Decimal("10"), Decimal("100")
        )
        assert position.quantity == Decimal("10")
        assert position.average_cost == Decimal("100")

    def test_adds_to_existing_position(self):
        existing = Position(
            symbol="BTC", mode=BotMode.TRAINING,
            quantity=Decimal("1"), average_cost=Decimal("100"),
        )
        position = position_after_buy(
            existing, "BTC", BotMode.TRAINING, Decimal("1"), Decimal("200")
        )
        assert position.quantity == Decimal("2")
        assert position.average_cost == Decimal("150")


# =============================================================================
# BUY
# =============================================================================

class TestBuy:
    """BUY execution against the database."""

    @pytest.mark.asyncio
    async def test_buy_debits_balance_and_opens_position(self, executor, test_database):
        trade = await executor.apply(
            TradeType.BUY, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        assert trade.total_value == Decimal("1000")
        assert trade.profit_loss == Decimal("0")
        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("9000")

        position = await test_database.get_position("BTC", BotMode.TRAINING)
        assert position.quantity == Decimal("10")
        assert position.average_cost == Decimal("100")

    @pytest.mark.asyncio
    async def test_second_buy_updates_weighted_average(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("1"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )
        await executor.apply(
            TradeType.BUY, Decimal("1"), Decimal("200"), "BTC", BotMode.TRAINING, TS
        )

        position = await test_database.get_position("BTC", BotMode.TRAINING)
        assert position.quantity == Decimal("2")
        assert position.average_cost == Decimal("150")
        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("9700")

    @pytest.mark.asyncio
    async def test_buy_only_touches_its_own_mode(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10"), Decimal("100"), "BTC", BotMode.LIVE, TS
        )

        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("10000")
        assert await test_database.get_position("BTC", BotMode.TRAINING) is None
        assert await test_database.get_balance(BotMode.LIVE) == Decimal("9000")

    @pytest.mark.asyncio
    async def test_buy_below_dust_rejected(self, executor, test_database):
        with pytest.raises(TradeRejected):
            await executor.apply(
                TradeType.BUY, Decimal("0.000001"), Decimal("100"),
                "BTC", BotMode.TRAINING, TS,
            )

        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("10000")
        assert await test_database.get_trades(BotMode.TRAINING) == []

    @pytest.mark.asyncio
    async def test_non_positive_price_rejected(self, executor):
        with pytest.raises(TradeRejected):
            await executor.apply(
                TradeType.BUY, Decimal("1"), Decimal("0"), "BTC", BotMode.TRAINING, TS
            )

    @pytest.mark.asyncio
    async def test_buy_without_account_creates_it_at_zero(self, executor, test_database):
        async with test_database.session_maker() as session:
            async with session.begin():
                account = await session.get(AccountModel, BotMode.LIVE.value)
                await session.delete(account)

        await executor.apply(
            TradeType.BUY, Decimal("2"), Decimal("50"), "BTC", BotMode.LIVE, TS
        )

        assert await test_database.get_balance(BotMode.LIVE) == Decimal("-100")


# =============================================================================
# SELL
# =============================================================================

class TestSell:
    """SELL execution against the database."""

    @pytest.mark.asyncio
    async def test_full_sell_realizes_profit_and_removes_position(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        trade = await executor.apply(
            TradeType.SELL, Decimal("10"), Decimal("120"), "BTC", BotMode.TRAINING, TS
        )

        assert trade.profit_loss == Decimal("200")
        assert trade.total_value == Decimal("1200")
        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("10200")
        assert await test_database.get_position("BTC", BotMode.TRAINING) is None

    @pytest.mark.asyncio
    async def test_partial_sell_keeps_average_cost(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        trade = await executor.apply(
            TradeType.SELL, Decimal("4"), Decimal("90"), "BTC", BotMode.TRAINING, TS
        )

        assert trade.profit_loss == Decimal("-40")
        position = await test_database.get_position("BTC", BotMode.TRAINING)
        assert position.quantity == Decimal("6")
        assert position.average_cost == Decimal("100")

    @pytest.mark.asyncio
    async def test_residual_dust_is_deleted(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10.000005"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        await executor.apply(
            TradeType.SELL, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        assert await test_database.get_position("BTC", BotMode.TRAINING) is None

    @pytest.mark.asyncio
    async def test_residual_at_dust_threshold_is_deleted(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10") + DUST_THRESHOLD, Decimal("100"),
            "BTC", BotMode.TRAINING, TS,
        )

        await executor.apply(
            TradeType.SELL, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        assert await test_database.get_position("BTC", BotMode.TRAINING) is None

    @pytest.mark.asyncio
    async def test_residual_above_dust_threshold_is_kept(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10.00002"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        await executor.apply(
            TradeType.SELL, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        position = await test_database.get_position("BTC", BotMode.TRAINING)
        assert position.quantity == Decimal("0.00002")
        assert not position.is_dust

    @pytest.mark.asyncio
    async def test_sell_without_position_rejected(self, executor, test_database):
        with pytest.raises(TradeRejected):
            await executor.apply(
                TradeType.SELL, Decimal("1"), Decimal("100"), "BTC", BotMode.TRAINING, TS
            )

        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("10000")
        assert await test_database.get_trades() == []

    @pytest.mark.asyncio
    async def test_oversell_rejected_without_mutation(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("1"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )

        with pytest.raises(TradeRejected):
            await executor.apply(
                TradeType.SELL, Decimal("2"), Decimal("100"), "BTC", BotMode.TRAINING, TS
            )

        position = await test_database.get_position("BTC", BotMode.TRAINING)
        assert position.quantity == Decimal("1")
        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("9900")
        assert len(await test_database.get_trades()) == 1


# =============================================================================
# Ledger and Atomicity
# =============================================================================

class TestLedgerAndAtomicity:

    @pytest.mark.asyncio
    async def test_every_trade_is_recorded(self, executor, test_database):
        await executor.apply(
            TradeType.BUY, Decimal("10"), Decimal("100"), "BTC", BotMode.TRAINING, TS
        )
        await executor.apply(
            TradeType.SELL, Decimal("10"), Decimal("120"), "BTC", BotMode.TRAINING, TS
        )

        trades = await test_database.get_trades(BotMode.TRAINING)
        assert [t.trade_type for t in trades] == [TradeType.SELL, TradeType.BUY]
        assert trades[0].profit_loss == Decimal("200")
        assert trades[1].profit_loss == Decimal("0")
        assert executor.trades_executed == 2
        assert executor.realized_pnl == Decimal("200")

    @pytest.mark.asyncio
    async def test_ledger_failure_rolls_back_balance_and_position(self, executor, test_database):
        with patch.object(
            LedgerTransaction, "append_trade",
            AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            with pytest.raises(RuntimeError):
                await executor.apply(
                    TradeType.BUY, Decimal("10"), Decimal("100"),
                    "BTC", BotMode.TRAINING, TS,
                )

        assert await test_database.get_balance(BotMode.TRAINING) == Decimal("10000")
        assert await test_database.get_position("BTC", BotMode.TRAINING) is None
        assert await test_database.get_trades() == []
        assert executor.trades_executed == 0
