"""Mode scheduler - owns the bot's run state and its periodic loops.

At most one loop exists at any time:
- TRAINING: generates a synthetic random-walk tick every few milliseconds
- LIVE: polls the price source every few seconds

Every loop is tagged with the generation it was started under. start(),
stop() and reset() bump the generation, and each tick re-checks it before
doing anything, so a tick queued before a mode switch turns into a no-op.
"""
import asyncio
import random
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

import structlog

from crossbot.core.config import BotConfig, bot_config
from crossbot.core.models import BotMode, BotState, TrainingCursor, utc_now
from crossbot.exchange.price_source import PriceSource
from crossbot.storage.database import Database
from crossbot.strategies.base import BaseStrategy

logger = structlog.get_logger(__name__)

PRICE_PRECISION = Decimal("0.01")


class RunState(str, Enum):
    """Scheduler state machine."""
    STOPPED = "STOPPED"
    RUNNING_TRAINING = "RUNNING(TRAINING)"
    RUNNING_LIVE = "RUNNING(LIVE)"


class ModeScheduler:
    """
    Starts, stops and resets the bot and runs its periodic loops.

    Responsibilities:
    - Keeps BotState (running, mode, last run) and persists every change
    - Runs exactly one loop matching the current mode
    - Drives the training random walk through the TrainingCursor
    - Feeds each tick to the strategy
    """

    def __init__(
        self,
        database: Database,
        strategy: BaseStrategy,
        price_source: PriceSource,
        config: Optional[BotConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.database = database
        self.strategy = strategy
        self.price_source = price_source
        self.config = config or bot_config
        self.symbol = self.config.symbol

        # State
        self._state = BotState()
        self.cursor = TrainingCursor()

        # Control
        self._lock = asyncio.Lock()
        self._generation = 0
        self._training_task: Optional[asyncio.Task] = None
        self._trading_task: Optional[asyncio.Task] = None
        self._inflight_tick: Optional[asyncio.Task] = None
        self._rng = rng or random.Random()

        # Counters
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.tick_errors = 0

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def mode(self) -> BotMode:
        return self._state.mode

    @property
    def run_state(self) -> RunState:
        if not self._state.running:
            return RunState.STOPPED
        if self._state.mode == BotMode.TRAINING:
            return RunState.RUNNING_TRAINING
        return RunState.RUNNING_LIVE

    @property
    def active_loops(self) -> int:
        """Number of loop tasks that have not finished."""
        return sum(
            1 for task in (self._training_task, self._trading_task)
            if task is not None and not task.done()
        )

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def start(self, mode: Union[BotMode, str]):
        """Run the bot in mode, replacing whatever loop was running."""
        mode = BotMode(mode.upper())

        async with self._lock:
            new_state = BotState(running=True, mode=mode, last_run_at=utc_now())
            await self.database.save_bot_state(new_state)

            self._generation += 1
            generation = self._generation
            self._state = new_state

            await self._cancel_loops()

            if mode == BotMode.TRAINING:
                self._training_task = asyncio.create_task(
                    self._run_loop(
                        generation, mode,
                        self.config.training_interval_seconds,
                        self._training_step,
                    ),
                    name="crossbot-training-loop",
                )
            else:
                self._trading_task = asyncio.create_task(
                    self._run_loop(
                        generation, mode,
                        self.config.live_interval_seconds,
                        self._trading_step,
                    ),
                    name="crossbot-trading-loop",
                )

        logger.info(
            "scheduler.started",
            mode=mode.value,
            symbol=self.symbol,
            generation=generation,
        )

    async def stop(self):
        """Stop the bot. Safe to call when already stopped."""
        async with self._lock:
            await self._stop_locked()
        logger.info("scheduler.stopped", mode=self._state.mode.value)

    async def reset(self):
        """Stop the bot and wipe accounts, positions, trades, prices and cursor."""
        async with self._lock:
            await self._stop_locked()

            await self.database.reset_account()
            await self.database.reset_portfolio()
            await self.database.clear_price_history(self.symbol)
            self.cursor = TrainingCursor()

        logger.info("scheduler.reset", symbol=self.symbol)

    async def status(self) -> BotState:
        """The bot state exactly as last persisted."""
        return await self.database.get_bot_state()

    async def recover(self) -> BotState:
        """
        Adopt the persisted mode and clear a running flag no loop here owns.

        A stored running=True with no loop in this scheduler was left behind
        by a process that exited without stop(); it is rewritten as stopped.

        Returns:
            The bot state as persisted after recovery
        """
        async with self._lock:
            persisted = await self.database.get_bot_state()
            if self.active_loops:
                return persisted

            if persisted.running:
                logger.warning(
                    "scheduler.stale_running_state",
                    mode=persisted.mode.value,
                    last_run_at=(
                        persisted.last_run_at.isoformat() if persisted.last_run_at else None
                    ),
                )
                persisted = BotState(running=False, mode=persisted.mode, last_run_at=None)
                await self.database.save_bot_state(persisted)

            self._state = BotState(running=False, mode=persisted.mode, last_run_at=None)
        return persisted

    async def _stop_locked(self):
        self._generation += 1
        self._state = BotState(running=False, mode=self._state.mode, last_run_at=None)
        await self._cancel_loops()
        await self.database.save_bot_state(self._state)

    async def _cancel_loops(self):
        """Cancel both loops and wait for a tick already past its guard."""
        for task in (self._training_task, self._trading_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._training_task = None
        self._trading_task = None

        tick = self._inflight_tick
        if tick is not None and not tick.done():
            await asyncio.wait([tick])
        self._inflight_tick = None

    # ------------------------------------------------------------------
    # Loop machinery
    # ------------------------------------------------------------------

    def _is_current(self, generation: int, mode: BotMode) -> bool:
        return (
            self._generation == generation
            and self._state.running
            and self._state.mode == mode
        )

    async def _run_loop(
        self,
        generation: int,
        mode: BotMode,
        interval: float,
        step: Callable[[], Awaitable[None]],
    ):
        """Run step with a fixed delay between ticks until superseded."""
        while self._is_current(generation, mode):
            tick = asyncio.ensure_future(self._run_tick(generation, mode, step))
            self._inflight_tick = tick
            # A tick that passed its guard finishes even if the loop is cancelled
            await asyncio.shield(tick)
            if self._inflight_tick is tick:
                self._inflight_tick = None
            await asyncio.sleep(interval)

    async def _run_tick(
        self,
        generation: int,
        mode: BotMode,
        step: Callable[[], Awaitable[None]],
    ):
        if not self._is_current(generation, mode):
            self.ticks_skipped += 1
            logger.debug("scheduler.stale_tick", mode=mode.value, generation=generation)
            return

        try:
            await step()
            self.ticks_run += 1
        except Exception as e:
            # The tick is abandoned; the next one runs independently
            self.tick_errors += 1
            logger.error(
                "scheduler.tick_error",
                mode=mode.value,
                error=str(e),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def next_training_price(self, previous: Decimal) -> Decimal:
        """One random-walk step from previous, floored at the configured minimum."""
        max_step = float(self.config.training_max_step)
        change = Decimal(str(self._rng.uniform(-max_step, max_step)))
        price = (previous + change).quantize(PRICE_PRECISION)
        return max(price, self.config.training_price_floor)

    async def _training_step(self):
        cursor = self.cursor
        previous = (
            cursor.last_price if cursor.last_price is not None
            else self.config.training_seed_price
        )
        timestamp = cursor.last_timestamp or utc_now()

        price = self.next_training_price(previous)
        await self.database.save_price(self.symbol, BotMode.TRAINING, price, timestamp)

        # Both averages need long_ma_period samples of history
        if cursor.step_index > self.config.long_ma_period:
            await self.strategy.evaluate(self.symbol, BotMode.TRAINING, price, timestamp)

        self.cursor = TrainingCursor(
            last_price=price,
            last_timestamp=timestamp + timedelta(minutes=self.config.training_step_minutes),
            step_index=cursor.step_index + 1,
        )

    async def _trading_step(self):
        price = await self.price_source.fetch_current()
        if price is None:
            logger.warning("scheduler.no_live_price", symbol=self.symbol)
            return

        now = utc_now()
        await self.database.save_price(self.symbol, BotMode.LIVE, price, now)
        await self.strategy.evaluate(self.symbol, BotMode.LIVE, price, now)

    def get_status(self) -> dict:
        """In-memory snapshot of the scheduler for diagnostics."""
        return {
            'state': self.run_state.value,
            'running': self._state.running,
            'mode': self._state.mode.value,
            'last_run_at': (
                self._state.last_run_at.isoformat() if self._state.last_run_at else None
            ),
            'symbol': self.symbol,
            'active_loops': self.active_loops,
            'training_cursor': {
                'last_price': (
                    str(self.cursor.last_price) if self.cursor.last_price is not None else None
                ),
                'step_index': self.cursor.step_index,
            },
            'ticks_run': self.ticks_run,
            'ticks_skipped': self.ticks_skipped,
            'tick_errors': self.tick_errors,
            'strategy': self.strategy.get_stats(),
        }
