"""
Crossbot - Main Entry Point

A moving-average crossover bot with a synthetic TRAINING mode and a LIVE mode.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Run the synthetic training loop (Ctrl+C to stop)
    python main.py --mode training

    # Trade against the live feed for ten minutes
    python main.py --mode live --duration 600

    # Show persisted status, account and recent trades
    python main.py --status --mode training

    # Wipe accounts, positions, trades and price history
    python main.py --reset

    # Clear a running flag left behind by a crashed process, then reset
    python main.py --reset --force
"""

import argparse
import asyncio
import signal
from typing import Dict, Optional

import structlog

from crossbot.core.config import bot_config, crossbot_config
from crossbot.core.models import BotMode, BotState
from crossbot.core.scheduler import ModeScheduler
from crossbot.exchange.price_source import CcxtPriceSource, PriceSource
from crossbot.execution.trade_executor import TradeExecutor
from crossbot.storage.database import Database
from crossbot.strategies.ma_crossover import MovingAverageCrossoverStrategy
from crossbot.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class BotAlreadyRunning(RuntimeError):
    """Raised when the stored status says another process runs the bot."""


class TradingBot:
    """
    Main application object wiring the scheduler to its collaborators.

    Components:
    - Database: prices, accounts, positions, trades, bot status
    - CcxtPriceSource: live ticker for LIVE mode
    - MovingAverageCrossoverStrategy + TradeExecutor: decision and execution
    - ModeScheduler: start / stop / reset / status
    """

    def __init__(self):
        self.database: Optional[Database] = None
        self.price_source: Optional[PriceSource] = None
        self.scheduler: Optional[ModeScheduler] = None

        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self, with_price_source: bool = True):
        """Initialize all components based on configuration."""
        logger.info("bot.initializing", symbol=bot_config.symbol)

        self.database = Database()
        await self.database.initialize()

        if with_price_source:
            self.price_source = CcxtPriceSource()
            logger.info(
                "bot.price_source_initialized",
                exchange=self.price_source.exchange_id,
                market=self.price_source.market_symbol,
            )
        else:
            self.price_source = _UnavailablePriceSource()

        executor = TradeExecutor(self.database)
        strategy = MovingAverageCrossoverStrategy(
            database=self.database,
            executor=executor,
            symbol=bot_config.symbol,
            short_ma_period=bot_config.short_ma_period,
            long_ma_period=bot_config.long_ma_period,
            trade_percentage=bot_config.trade_percentage,
        )
        self.scheduler = ModeScheduler(
            database=self.database,
            strategy=strategy,
            price_source=self.price_source,
        )

        self._initialized = True
        logger.info("bot.initialized")

    async def claim(self, force: bool = False) -> BotState:
        """
        Take over the stored bot state before starting or resetting.

        Args:
            force: Clear a running flag even though it may belong to a live
                process (use after a crash)

        Raises:
            BotAlreadyRunning: If the stored status is running and not forced
        """
        state = await self.scheduler.status()
        if state.running and not force:
            started = state.last_run_at.isoformat() if state.last_run_at else "unknown"
            raise BotAlreadyRunning(
                f"Bot is already running in {state.mode.value} mode (started {started}). "
                f"Stop that process first, or pass --force if it crashed."
            )
        return await self.scheduler.recover()

    async def reset(self, force: bool = False):
        """Reset accounts, positions, trades and prices unless a bot is running."""
        await self.claim(force)
        await self.scheduler.reset()

    async def run(
        self, mode: BotMode, duration: Optional[float] = None, force: bool = False
    ):
        """Run the bot in mode until a shutdown signal (or duration elapses)."""
        if not self._initialized:
            raise RuntimeError("Bot not initialized. Call initialize() first.")

        try:
            await self.claim(force)
        except BotAlreadyRunning:
            await self._close_resources()
            raise

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.scheduler.start(mode)
            if duration:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=duration)
                except asyncio.TimeoutError:
                    logger.info("bot.duration_elapsed", seconds=duration)
            else:
                await self._shutdown_event.wait()
        except Exception as e:
            logger.error("bot.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Perform graceful shutdown."""
        logger.info("bot.shutting_down")

        if self.scheduler:
            await self.scheduler.stop()

        await self._close_resources()
        logger.info("bot.shutdown_complete")

    async def _close_resources(self):
        if self.price_source:
            await self.price_source.close()

        if self.database:
            await self.database.close()

    def _signal_handler(self):
        """Handle shutdown signals."""
        logger.info("bot.shutdown_signal_received")
        self._shutdown_event.set()

    async def get_status(self, mode: Optional[BotMode] = None) -> Dict:
        """Persisted bot state plus the account view of one mode."""
        state = await self.scheduler.status()
        mode = mode or state.mode

        account = await self.database.get_account_summary(mode)
        portfolio = await self.database.get_portfolio(mode)
        trades = await self.database.get_trades(mode, limit=5)
        price_ticks = await self.database.count_prices(bot_config.symbol, mode)

        return {
            "running": state.running,
            "mode": state.mode.value,
            "last_run_at": state.last_run_at.isoformat() if state.last_run_at else None,
            "symbol": bot_config.symbol,
            "view_mode": mode.value,
            "price_ticks": price_ticks,
            "account": {k: str(v) for k, v in account.items()},
            "portfolio": [
                {k: str(v) for k, v in row.items()} for row in portfolio
            ],
            "recent_trades": [
                {
                    "type": t.trade_type.value,
                    "quantity": str(t.quantity),
                    "price": str(t.price),
                    "pnl": str(t.profit_loss),
                    "timestamp": t.timestamp.isoformat(),
                }
                for t in trades
            ],
        }


class _UnavailablePriceSource(PriceSource):
    """Stand-in used by commands that never reach the live loop."""

    async def fetch_current(self):
        return None


def print_banner():
    """Print the startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════════╗
║                                                                  ║
║                       CROSSBOT v{crossbot_config.system.app_version:<10}                        ║
║                                                                  ║
║         Moving-average crossover bot: TRAINING | LIVE            ║
║                                                                  ║
╚══════════════════════════════════════════════════════════════════╝
"""
    print(banner)


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = crossbot_config.validate_configuration()
    warnings = []

    bot = crossbot_config.bot
    if bot.live_interval_seconds < 2:
        warnings.append(
            f"⚠️  Live interval of {bot.live_interval_seconds}s may hit feed rate limits"
        )

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "symbol": bot.symbol,
        "short_ma_period": bot.short_ma_period,
        "long_ma_period": bot.long_ma_period,
        "trade_percentage": str(bot.trade_percentage),
        "price_feed": f"{crossbot_config.price_feed.exchange_id} {crossbot_config.price_feed.market_symbol}",
    }


def print_status(status: Dict):
    """Print formatted status output."""
    print("\n" + "=" * 60)
    print("                 CROSSBOT - SYSTEM STATUS")
    print("=" * 60)

    state = "RUNNING" if status["running"] else "STOPPED"
    print(f"\n📊 Bot: {state} ({status['mode']})")
    print(f"🕐 Last run: {status.get('last_run_at') or 'N/A'}")
    print(f"🪙 Symbol: {status['symbol']}")

    account = status["account"]
    print(f"\n💰 Account ({status['view_mode']}):")
    print(f"   Balance: {account['balance']}")
    print(f"   Portfolio value: {account['portfolio_value']}")
    print(f"   Total value: {account['total_value']}")
    print(f"   Price ticks stored: {status['price_ticks']}")

    print(f"\n📈 Positions:")
    if status["portfolio"]:
        for row in status["portfolio"]:
            print(
                f"   - {row['symbol']}: {row['quantity']} @ {row['average_cost']} "
                f"(uPnL {row['unrealized_pnl']})"
            )
    else:
        print("   No open positions")

    trades = status["recent_trades"]
    if trades:
        print(f"\n💹 Recent Trades:")
        for trade in trades:
            print(
                f"   {trade['timestamp']} {trade['type']} {trade['quantity']} "
                f"@ {trade['price']} PnL {trade['pnl']}"
            )

    print("\n" + "=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crossbot - moving-average crossover trading bot"
    )

    parser.add_argument(
        "--mode",
        choices=["training", "live"],
        help="Run the bot in this mode (or select the account for --status)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    # Actions
    parser.add_argument(
        "--status", action="store_true", help="Show bot status and exit"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Reset accounts, positions, trades and price history",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run or reset even if the stored status says the bot is running",
    )

    args = parser.parse_args()

    setup_logging()

    if not args.check and not args.status:
        print_banner()

    config_check = check_configuration()
    for warning in config_check["warnings"]:
        print(warning)

    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\n✓ Configuration is valid")
        else:
            print("\n✗ Configuration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nSymbol: {config_check['symbol']}")
        print(
            f"Moving averages: {config_check['short_ma_period']} / "
            f"{config_check['long_ma_period']}"
        )
        print(f"Trade percentage: {config_check['trade_percentage']}")
        print(f"Price feed: {config_check['price_feed']}")
        print("\n" + "=" * 60)
        return

    if not config_check["valid"]:
        print("\n✗ Configuration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return

    if args.init_db:
        print("\n📦 Initializing database...")
        db = Database()
        await db.initialize()
        print("✓ Database initialized successfully")
        await db.close()
        return

    mode = BotMode(args.mode.upper()) if args.mode else None
    bot = TradingBot()

    try:
        if args.status or args.reset:
            await bot.initialize(with_price_source=False)
            try:
                if args.reset:
                    await bot.reset(force=args.force)
                    print("✓ Bot reset: accounts restored, history cleared")
                if args.status:
                    print_status(await bot.get_status(mode))
            finally:
                await bot.database.close()
            return

        if mode is None:
            parser.error("--mode is required to run the bot")

        await bot.initialize(with_price_source=mode == BotMode.LIVE)
        await bot.run(mode, duration=args.duration, force=args.force)

    except BotAlreadyRunning as e:
        print(f"\n✗ {e}")
    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
