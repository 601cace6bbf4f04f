"""Configuration management for the crossbot trading system."""

from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="ENVIRONMENT"
    )
    app_name: str = Field(default="Crossbot", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")


# =============================================================================
# Bot Configuration
# =============================================================================


class BotConfig(BaseSettings):
    """Strategy and scheduling parameters for the bot."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    symbol: str = Field(default="BTC", validation_alias="BOT_SYMBOL")

    # Moving-average crossover
    short_ma_period: int = Field(default=5, ge=1, validation_alias="SHORT_MA_PERIOD")
    long_ma_period: int = Field(default=20, ge=2, validation_alias="LONG_MA_PERIOD")
    trade_percentage: Decimal = Field(
        default=Decimal("0.1"), validation_alias="TRADE_PERCENTAGE"
    )

    # Loop cadence
    training_interval_ms: int = Field(
        default=50, ge=1, validation_alias="TRAINING_INTERVAL_MS"
    )
    live_interval_seconds: float = Field(
        default=7.0, gt=0, validation_alias="LIVE_INTERVAL_SECONDS"
    )

    # Account
    initial_balance: Decimal = Field(
        default=Decimal("10000"), ge=0, validation_alias="INITIAL_BALANCE"
    )

    # Synthetic random walk
    training_seed_price: Decimal = Field(
        default=Decimal("50000"), gt=0, validation_alias="TRAINING_SEED_PRICE"
    )
    training_price_floor: Decimal = Field(
        default=Decimal("10000"), gt=0, validation_alias="TRAINING_PRICE_FLOOR"
    )
    training_max_step: Decimal = Field(
        default=Decimal("500"), ge=0, validation_alias="TRAINING_MAX_STEP"
    )
    training_step_minutes: int = Field(
        default=30, ge=1, validation_alias="TRAINING_STEP_MINUTES"
    )

    @field_validator("trade_percentage")
    @classmethod
    def validate_trade_percentage(cls, v):
        if v <= 0 or v > 1:
            raise ValueError("trade_percentage must be in (0, 1]")
        return v

    @model_validator(mode="after")
    def validate_periods(self) -> "BotConfig":
        if self.short_ma_period >= self.long_ma_period:
            raise ValueError("short_ma_period must be smaller than long_ma_period")
        return self

    @property
    def training_interval_seconds(self) -> float:
        return self.training_interval_ms / 1000


# =============================================================================
# Price Feed Configuration
# =============================================================================


class PriceFeedConfig(BaseSettings):
    """Live price feed (ccxt public ticker) configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    exchange_id: str = Field(default="coinbase", validation_alias="PRICE_FEED_EXCHANGE")
    market_symbol: str = Field(default="BTC/USD", validation_alias="PRICE_FEED_MARKET")
    timeout_seconds: float = Field(
        default=5.0, gt=0, validation_alias="PRICE_FEED_TIMEOUT"
    )


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/crossbot.db", validation_alias="DATABASE_URL"
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: str = Field(default="logs/crossbot.log", validation_alias="LOG_FILE")


# =============================================================================
# Master Configuration
# =============================================================================


class CrossbotConfig:
    """
    Container for all crossbot configurations.

    Usage:
        from crossbot.core.config import crossbot_config

        period = crossbot_config.bot.long_ma_period
    """

    def __init__(self):
        self.system = SystemConfig()
        self.bot = BotConfig()
        self.price_feed = PriceFeedConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if not self.bot.symbol.strip():
            issues.append("Bot symbol must not be empty")

        if not self.price_feed.market_symbol.startswith(self.bot.symbol):
            issues.append(
                f"Price feed market {self.price_feed.market_symbol} does not "
                f"quote symbol {self.bot.symbol}"
            )

        if self.bot.training_price_floor >= self.bot.training_seed_price:
            issues.append("Training price floor must be below the seed price")

        if self.bot.initial_balance == 0:
            issues.append("Initial balance is zero, the bot will never buy")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

crossbot_config = CrossbotConfig()

bot_config = crossbot_config.bot
database_config = crossbot_config.database
logging_config = crossbot_config.logging
price_feed_config = crossbot_config.price_feed


__all__ = [
    "SystemConfig",
    "BotConfig",
    "PriceFeedConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "CrossbotConfig",
    "bot_config",
    "database_config",
    "logging_config",
    "price_feed_config",
    "crossbot_config",
]
