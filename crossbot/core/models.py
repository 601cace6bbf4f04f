"""Data models for the crossbot trading system.

The bot manages one symbol with two isolated books:
- TRAINING: synthetic random-walk prices, accelerated cadence
- LIVE: real price feed, real-time cadence

All monetary values use Decimal for precision.
All timestamps are naive UTC datetime objects (SQLite does not keep tzinfo).
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

# Positions at or below this quantity are considered closed
DUST_THRESHOLD = Decimal("0.00001")


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enums
# =============================================================================

class BotMode(str, Enum):
    """Operating mode; each mode owns a separate account and portfolio."""
    TRAINING = "TRAINING"
    LIVE = "LIVE"


class TradeType(str, Enum):
    """Executed trade direction."""
    BUY = "BUY"
    SELL = "SELL"


class SignalType(str, Enum):
    """Strategy decision."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


# =============================================================================
# Bot State
# =============================================================================

class BotState(BaseModel):
    """Persisted run/mode snapshot of the bot.

    Attributes:
        running: True while a periodic loop is installed
        mode: Mode of the active (or last active) loop
        last_run_at: When the bot was last started; None once stopped
    """
    running: bool = Field(default=False, description="Bot is running")
    mode: BotMode = Field(default=BotMode.TRAINING, description="Operating mode")
    last_run_at: Optional[datetime] = Field(default=None, description="Last start time")


class TrainingCursor(BaseModel):
    """Position of the synthetic random walk between training ticks."""
    last_price: Optional[Decimal] = None
    last_timestamp: Optional[datetime] = None
    step_index: int = Field(default=0, ge=0)

    @property
    def is_zero(self) -> bool:
        return (
            self.last_price is None
            and self.last_timestamp is None
            and self.step_index == 0
        )


# =============================================================================
# Account / Portfolio Models
# =============================================================================

class Account(BaseModel):
    """Cash account for one mode."""
    mode: BotMode
    balance: Decimal = Field(default=Decimal("0"), description="Cash balance")
    initial_balance: Decimal = Field(default=Decimal("0"), description="Reset target")

    @field_serializer("balance", "initial_balance", when_used="json")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class Position(BaseModel):
    """Holding of the managed symbol in one mode.

    Attributes:
        symbol: Asset symbol (e.g., "BTC")
        mode: Book the position belongs to
        quantity: Units held
        average_cost: Weighted average purchase price
    """
    symbol: str = Field(..., description="Asset symbol")
    mode: BotMode = Field(..., description="Operating mode")
    quantity: Decimal = Field(..., ge=0, description="Units held")
    average_cost: Decimal = Field(..., ge=0, description="Average cost per unit")

    @field_serializer("quantity", "average_cost", when_used="json")
    def serialize_decimal(self, value: Decimal) -> str:
        return str(value)

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.average_cost

    @property
    def is_dust(self) -> bool:
        """True if the position is small enough to count as closed."""
        return self.quantity <= DUST_THRESHOLD

    def market_value(self, price: Decimal) -> Decimal:
        return self.quantity * price

    def unrealized_pnl(self, price: Decimal) -> Decimal:
        return (price - self.average_cost) * self.quantity


# =============================================================================
# Price / Trade Models
# =============================================================================

class PriceTick(BaseModel):
    """One observed (or generated) price."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    mode: BotMode
    price: Decimal = Field(..., gt=0)
    timestamp: datetime

    @field_serializer("price", when_used="json")
    def serialize_price(self, value: Decimal) -> str:
        return str(value)


class Trade(BaseModel):
    """Audit record of an executed trade. Immutable once created.

    Attributes:
        symbol: Asset symbol
        trade_type: BUY or SELL
        quantity: Units traded
        price: Execution price
        total_value: quantity * price
        profit_loss: Realized P&L (always zero on BUY)
        timestamp: Execution time (simulated time in TRAINING)
        mode: Book the trade was applied to
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Asset symbol")
    trade_type: TradeType = Field(..., description="Trade direction")
    quantity: Decimal = Field(..., gt=0, description="Units traded")
    price: Decimal = Field(..., gt=0, description="Execution price")
    total_value: Decimal = Field(..., description="quantity * price")
    profit_loss: Decimal = Field(default=Decimal("0"), description="Realized P&L")
    timestamp: datetime = Field(default_factory=utc_now, description="Execution time")
    mode: BotMode = Field(..., description="Operating mode")
    id: str = Field(default_factory=lambda: str(uuid4()), description="Trade ID")

    @field_serializer("quantity", "price", "total_value", "profit_loss", when_used="json")
    def serialize_decimal(self, value: Decimal) -> str:
        return str(value)

    @model_validator(mode="after")
    def buy_has_no_pnl(self) -> "Trade":
        if self.trade_type == TradeType.BUY and self.profit_loss != 0:
            raise ValueError("BUY trades cannot realize profit or loss")
        return self

    @property
    def is_profitable(self) -> bool:
        return self.profit_loss > 0


class TradeDecision(BaseModel):
    """Output of the crossover decision function."""
    signal: SignalType
    quantity: Decimal = Decimal("0")
    price: Optional[Decimal] = None
    reason: str = ""

    @property
    def is_trade(self) -> bool:
        return self.signal != SignalType.HOLD

    @classmethod
    def hold(cls, reason: str) -> "TradeDecision":
        return cls(signal=SignalType.HOLD, reason=reason)


__all__ = [
    "DUST_THRESHOLD",
    "utc_now",
    "BotMode",
    "TradeType",
    "SignalType",
    "BotState",
    "TrainingCursor",
    "Account",
    "Position",
    "PriceTick",
    "Trade",
    "TradeDecision",
]
