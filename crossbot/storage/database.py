"""Database storage for prices, accounts, positions, trades and bot status."""
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import structlog
from sqlalchemy import (
    Boolean, Column, DateTime, Integer, Numeric, String,
    UniqueConstraint, delete, func, select, update
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import declarative_base

from crossbot.core.config import bot_config, database_config
from crossbot.core.models import (
    Account, BotMode, BotState, Position, Trade, TradeType
)

logger = structlog.get_logger(__name__)

Base = declarative_base()

# SQLite keeps Numeric as REAL; values are read back rounded to this many places
SCALE = 10


class AccountModel(Base):
    """SQLAlchemy model for per-mode cash accounts."""
    __tablename__ = 'account'

    mode = Column(String, primary_key=True)
    balance = Column(Numeric(36, SCALE), nullable=False, default=0)
    initial_balance = Column(Numeric(36, SCALE), nullable=False, default=0)


class PortfolioModel(Base):
    """SQLAlchemy model for open positions."""
    __tablename__ = 'portfolio'

    symbol = Column(String, primary_key=True)
    mode = Column(String, primary_key=True)
    quantity = Column(Numeric(36, SCALE), nullable=False)
    average_cost = Column(Numeric(36, SCALE), nullable=False)


class PriceHistoryModel(Base):
    """SQLAlchemy model for price ticks."""
    __tablename__ = 'price_history'
    __table_args__ = (
        UniqueConstraint('symbol', 'mode', 'timestamp', name='uq_price_tick'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False)
    price = Column(Numeric(36, SCALE), nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)


class TradeModel(Base):
    """SQLAlchemy model for the trade ledger."""
    __tablename__ = 'trades'

    id = Column(String, primary_key=True)
    symbol = Column(String, nullable=False)
    trade_type = Column(String, nullable=False)
    quantity = Column(Numeric(36, SCALE), nullable=False)
    price = Column(Numeric(36, SCALE), nullable=False)
    total_value = Column(Numeric(36, SCALE), nullable=False)
    profit_loss = Column(Numeric(36, SCALE), nullable=False, default=0)
    timestamp = Column(DateTime, nullable=False, index=True)
    mode = Column(String, nullable=False)
    seq = Column(Integer, nullable=False, default=0)


class BotStatusModel(Base):
    """SQLAlchemy model for the single bot status row."""
    __tablename__ = 'bot_status'

    id = Column(Integer, primary_key=True)
    is_running = Column(Boolean, nullable=False, default=False)
    mode = Column(String, nullable=False, default=BotMode.TRAINING.value)
    last_run = Column(DateTime, nullable=True)


class LedgerTransaction:
    """
    Account, portfolio and ledger operations bound to one open transaction.

    Obtained from Database.transaction(); everything done through one
    instance is committed together or rolled back together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, mode: BotMode) -> Decimal:
        account = await self.session.get(AccountModel, mode.value)
        return account.balance if account else Decimal("0")

    async def adjust_balance(self, mode: BotMode, delta: Decimal) -> Decimal:
        """Add delta to the mode's balance, creating the account at zero if absent."""
        account = await self.session.get(AccountModel, mode.value)
        if account is None:
            account = AccountModel(
                mode=mode.value, balance=Decimal("0"), initial_balance=Decimal("0")
            )
            self.session.add(account)
            logger.warning("database.account_created_on_trade", mode=mode.value)
        account.balance = Decimal(account.balance) + delta
        return account.balance

    async def get_position(self, symbol: str, mode: BotMode) -> Optional[Position]:
        db_position = await self.session.get(PortfolioModel, (symbol, mode.value))
        if db_position is None:
            return None
        return _position_from_model(db_position)

    async def save_position(self, position: Position):
        db_position = await self.session.get(
            PortfolioModel, (position.symbol, position.mode.value)
        )
        if db_position is None:
            self.session.add(PortfolioModel(
                symbol=position.symbol,
                mode=position.mode.value,
                quantity=position.quantity,
                average_cost=position.average_cost,
            ))
        else:
            db_position.quantity = position.quantity
            db_position.average_cost = position.average_cost

    async def delete_position(self, symbol: str, mode: BotMode):
        await self.session.execute(
            delete(PortfolioModel).where(
                PortfolioModel.symbol == symbol,
                PortfolioModel.mode == mode.value,
            )
        )

    async def append_trade(self, trade: Trade):
        # seq keeps insertion order for trades sharing a timestamp
        result = await self.session.execute(
            select(TradeModel.seq).order_by(TradeModel.seq.desc()).limit(1)
        )
        last_seq = result.scalar_one_or_none() or 0
        self.session.add(TradeModel(
            id=trade.id,
            symbol=trade.symbol,
            trade_type=trade.trade_type.value,
            quantity=trade.quantity,
            price=trade.price,
            total_value=trade.total_value,
            profit_loss=trade.profit_loss,
            timestamp=trade.timestamp,
            mode=trade.mode.value,
            seq=last_seq + 1,
        ))


class Database:
    """Async database interface."""

    def __init__(self, database_url: Optional[str] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.database_url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, echo=False)
        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def initialize(self, initial_balance: Optional[Decimal] = None):
        """Create tables and seed the accounts and the status row."""
        self._ensure_directory()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        if initial_balance is None:
            initial_balance = bot_config.initial_balance

        async with self.session_maker() as session:
            async with session.begin():
                for mode in BotMode:
                    if await session.get(AccountModel, mode.value) is None:
                        session.add(AccountModel(
                            mode=mode.value,
                            balance=initial_balance,
                            initial_balance=initial_balance,
                        ))
                if await session.get(BotStatusModel, 1) is None:
                    session.add(BotStatusModel(
                        id=1, is_running=False, mode=BotMode.TRAINING.value
                    ))

        logger.info("database.initialized", url=self.database_url)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    def _ensure_directory(self):
        url = make_url(self.database_url)
        if url.get_backend_name() == 'sqlite' and url.database not in (None, '', ':memory:'):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerTransaction]:
        """Open a transaction that commits on success and rolls back on error."""
        async with self.session_maker() as session:
            async with session.begin():
                yield LedgerTransaction(session)

    # Price history operations
    async def save_price(
        self, symbol: str, mode: BotMode, price: Decimal, timestamp: datetime
    ):
        """Insert a price tick, overwriting the price of an existing tick."""
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(PriceHistoryModel).where(
                        PriceHistoryModel.symbol == symbol,
                        PriceHistoryModel.mode == mode.value,
                        PriceHistoryModel.timestamp == timestamp,
                    )
                )
                db_tick = result.scalar_one_or_none()
                if db_tick is None:
                    session.add(PriceHistoryModel(
                        symbol=symbol, mode=mode.value, price=price, timestamp=timestamp
                    ))
                else:
                    db_tick.price = price

    async def get_recent_prices(
        self, symbol: str, mode: BotMode, limit: int
    ) -> List[Decimal]:
        """Latest prices for (symbol, mode), newest first."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(PriceHistoryModel.price)
                .where(
                    PriceHistoryModel.symbol == symbol,
                    PriceHistoryModel.mode == mode.value,
                )
                .order_by(PriceHistoryModel.timestamp.desc(), PriceHistoryModel.id.desc())
                .limit(limit)
            )
            return [Decimal(p) for p in result.scalars().all()]

    async def moving_average(
        self, symbol: str, mode: BotMode, period: int
    ) -> Optional[Decimal]:
        """Mean of the latest `period` prices, or None with fewer samples."""
        if period <= 0:
            return None
        prices = await self.get_recent_prices(symbol, mode, period)
        if len(prices) < period:
            return None
        return sum(prices, Decimal("0")) / period

    async def get_latest_price(self, symbol: str, mode: BotMode) -> Optional[Decimal]:
        prices = await self.get_recent_prices(symbol, mode, 1)
        return prices[0] if prices else None

    async def get_price_history(
        self, symbol: str, mode: BotMode, limit: int = 200
    ) -> List[Dict]:
        """Recent price ticks, newest first."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(PriceHistoryModel)
                .where(
                    PriceHistoryModel.symbol == symbol,
                    PriceHistoryModel.mode == mode.value,
                )
                .order_by(PriceHistoryModel.timestamp.desc(), PriceHistoryModel.id.desc())
                .limit(limit)
            )
            return [
                {
                    'symbol': t.symbol,
                    'mode': t.mode,
                    'price': Decimal(t.price),
                    'timestamp': t.timestamp,
                }
                for t in result.scalars().all()
            ]

    async def count_prices(self, symbol: str, mode: Optional[BotMode] = None) -> int:
        async with self.session_maker() as session:
            query = select(func.count(PriceHistoryModel.id)).where(
                PriceHistoryModel.symbol == symbol
            )
            if mode is not None:
                query = query.where(PriceHistoryModel.mode == mode.value)
            result = await session.execute(query)
            return result.scalar_one()

    async def clear_price_history(self, symbol: str) -> int:
        """Delete every tick for the symbol in both modes."""
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(PriceHistoryModel).where(PriceHistoryModel.symbol == symbol)
                )
        logger.info("database.price_history_cleared", symbol=symbol, rows=result.rowcount)
        return result.rowcount

    # Account operations
    async def get_account(self, mode: BotMode) -> Optional[Account]:
        async with self.session_maker() as session:
            db_account = await session.get(AccountModel, mode.value)
            if db_account is None:
                return None
            return Account(
                mode=BotMode(db_account.mode),
                balance=Decimal(db_account.balance),
                initial_balance=Decimal(db_account.initial_balance),
            )

    async def get_balance(self, mode: BotMode) -> Decimal:
        account = await self.get_account(mode)
        return account.balance if account else Decimal("0")

    async def reset_account(self):
        """Restore every account's balance to its initial balance."""
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(AccountModel).values(balance=AccountModel.initial_balance)
                )
        logger.info("database.account_reset")

    # Position operations
    async def get_position(self, symbol: str, mode: BotMode) -> Optional[Position]:
        async with self.session_maker() as session:
            db_position = await session.get(PortfolioModel, (symbol, mode.value))
            if db_position is None:
                return None
            return _position_from_model(db_position)

    async def get_positions(self, mode: Optional[BotMode] = None) -> List[Position]:
        async with self.session_maker() as session:
            query = select(PortfolioModel)
            if mode is not None:
                query = query.where(PortfolioModel.mode == mode.value)
            result = await session.execute(query)
            return [_position_from_model(p) for p in result.scalars().all()]

    async def reset_portfolio(self):
        """Delete all positions and the whole trade ledger."""
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(delete(PortfolioModel))
                await session.execute(delete(TradeModel))
        logger.info("database.portfolio_reset")

    # Trade operations
    async def get_trades(
        self, mode: Optional[BotMode] = None, limit: int = 100
    ) -> List[Trade]:
        """Most recent trades, newest first."""
        async with self.session_maker() as session:
            query = select(TradeModel).order_by(
                TradeModel.timestamp.desc(), TradeModel.seq.desc()
            ).limit(limit)
            if mode is not None:
                query = query.where(TradeModel.mode == mode.value)
            result = await session.execute(query)
            return [_trade_from_model(t) for t in result.scalars().all()]

    # Bot status operations
    async def get_bot_state(self) -> BotState:
        async with self.session_maker() as session:
            status = await session.get(BotStatusModel, 1)
            if status is None:
                return BotState()
            return BotState(
                running=status.is_running,
                mode=BotMode(status.mode),
                last_run_at=status.last_run,
            )

    async def save_bot_state(self, state: BotState):
        async with self.session_maker() as session:
            async with session.begin():
                status = await session.get(BotStatusModel, 1)
                if status is None:
                    status = BotStatusModel(id=1)
                    session.add(status)
                status.is_running = state.running
                status.mode = state.mode.value
                status.last_run = state.last_run_at

    # Reporting
    async def get_portfolio(self, mode: BotMode) -> List[Dict]:
        """Positions valued at the latest known price of their mode."""
        rows = []
        for position in await self.get_positions(mode):
            current_price = await self.get_latest_price(position.symbol, mode)
            if current_price is None:
                continue
            rows.append({
                'symbol': position.symbol,
                'mode': mode.value,
                'quantity': position.quantity,
                'average_cost': position.average_cost,
                'current_price': current_price,
                'current_value': position.market_value(current_price),
                'unrealized_pnl': position.unrealized_pnl(current_price),
            })
        return rows

    async def get_account_summary(self, mode: BotMode) -> Dict:
        """Balance plus the mark-to-market value of the mode's positions."""
        account = await self.get_account(mode)
        balance = account.balance if account else Decimal("0")
        portfolio_value = sum(
            (row['current_value'] for row in await self.get_portfolio(mode)),
            Decimal("0"),
        )
        return {
            'mode': mode.value,
            'balance': balance,
            'initial_balance': account.initial_balance if account else Decimal("0"),
            'portfolio_value': portfolio_value,
            'total_value': balance + portfolio_value,
        }


# Helpers
def _position_from_model(model: PortfolioModel) -> Position:
    """Convert DB model to Position object."""
    return Position(
        symbol=model.symbol,
        mode=BotMode(model.mode),
        quantity=Decimal(model.quantity),
        average_cost=Decimal(model.average_cost),
    )


def _trade_from_model(model: TradeModel) -> Trade:
    """Convert DB model to Trade object."""
    return Trade(
        id=model.id,
        symbol=model.symbol,
        trade_type=TradeType(model.trade_type),
        quantity=Decimal(model.quantity),
        price=Decimal(model.price),
        total_value=Decimal(model.total_value),
        profit_loss=Decimal(model.profit_loss),
        timestamp=model.timestamp,
        mode=BotMode(model.mode),
    )
