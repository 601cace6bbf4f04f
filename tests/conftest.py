"""Pytest fixtures and utilities for the crossbot test suite."""
import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from crossbot.core.config import BotConfig
from crossbot.core.models import BotMode, Trade
from crossbot.core.scheduler import ModeScheduler
from crossbot.exchange.price_source import PriceSource
from crossbot.execution.trade_executor import TradeExecutor
from crossbot.storage.database import Database
from crossbot.strategies.base import BaseStrategy
from crossbot.strategies.ma_crossover import MovingAverageCrossoverStrategy

SYMBOL = "BTC"
INITIAL_BALANCE = Decimal("10000")
BASE_TIME = datetime(2024, 1, 1, 0, 0, 0)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def test_bot_config():
    """Small moving-average windows and millisecond cadence for fast tests."""
    return BotConfig(
        symbol=SYMBOL,
        short_ma_period=3,
        long_ma_period=5,
        trade_percentage=Decimal("0.1"),
        training_interval_ms=1,
        live_interval_seconds=0.01,
        initial_balance=INITIAL_BALANCE,
    )


# =============================================================================
# Storage Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_database(tmp_path):
    """Create a file-backed test database seeded with both accounts."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'crossbot.db'}")
    await db.initialize(initial_balance=INITIAL_BALANCE)
    yield db
    await db.close()


async def seed_prices(
    database: Database,
    prices: List[str],
    mode: BotMode = BotMode.TRAINING,
    start: datetime = BASE_TIME,
    symbol: str = SYMBOL,
) -> datetime:
    """Store prices 30 minutes apart; returns the timestamp of the last one."""
    timestamp = start
    for i, price in enumerate(prices):
        timestamp = start + timedelta(minutes=30 * i)
        await database.save_price(symbol, mode, Decimal(price), timestamp)
    return timestamp


async def set_balance(database: Database, mode: BotMode, balance: Decimal):
    """Move the mode's balance to an exact figure through the ledger transaction."""
    async with database.transaction() as tx:
        current = await tx.get_balance(mode)
        await tx.adjust_balance(mode, balance - current)


async def append_trade(database: Database, trade: Trade):
    async with database.transaction() as tx:
        await tx.append_trade(trade)


@pytest.fixture
def price_seeder(test_database):
    """Async helper storing a price series in the test database."""
    async def _seed(prices, mode=BotMode.TRAINING, start=BASE_TIME):
        return await seed_prices(test_database, prices, mode=mode, start=start)
    return _seed


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def executor(test_database):
    """Trade executor over the test database."""
    return TradeExecutor(test_database)


@pytest.fixture
def strategy(test_database, executor, test_bot_config):
    """Crossover strategy with 3/5 windows."""
    return MovingAverageCrossoverStrategy(
        database=test_database,
        executor=executor,
        symbol=SYMBOL,
        short_ma_period=test_bot_config.short_ma_period,
        long_ma_period=test_bot_config.long_ma_period,
        trade_percentage=test_bot_config.trade_percentage,
    )


@pytest.fixture
def mock_strategy():
    """Create a mock strategy."""
    strategy = AsyncMock(spec=BaseStrategy)
    strategy.name = "TestStrategy"
    strategy.symbol = SYMBOL
    strategy.evaluate = AsyncMock(return_value=None)
    strategy.get_stats = MagicMock(return_value={"name": "TestStrategy"})
    return strategy


@pytest.fixture
def mock_price_source():
    """Price source returning a fixed live price."""
    source = AsyncMock(spec=PriceSource)
    source.fetch_current = AsyncMock(return_value=Decimal("50000"))
    source.close = AsyncMock()
    return source


@pytest_asyncio.fixture
async def scheduler(test_database, mock_strategy, mock_price_source, test_bot_config):
    """Scheduler with a mocked strategy; stopped on teardown."""
    sched = ModeScheduler(
        database=test_database,
        strategy=mock_strategy,
        price_source=mock_price_source,
        config=test_bot_config,
        rng=random.Random(7),
    )
    yield sched
    await sched.stop()


@pytest_asyncio.fixture
async def live_scheduler(test_database, strategy, mock_price_source, test_bot_config):
    """Scheduler wired to the real strategy, executor and database."""
    sched = ModeScheduler(
        database=test_database,
        strategy=strategy,
        price_source=mock_price_source,
        config=test_bot_config,
        rng=random.Random(42),
    )
    yield sched
    await sched.stop()
