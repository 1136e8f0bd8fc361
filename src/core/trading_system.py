from typing import Awaitable, Callable, List
import asyncio
import time
from core.events import StrategyAction
from core.position_tracker import PositionStateMachine
from core.types import TokenSignal, TradeStage, fraction_of, lamports_to_sol
from execution.constants import SOL_MINT
from risk.position_sizer import PositionSizer
from risk.safety_validator import SafetyValidator
from utils.config import Config
from utils.logger import TradingLogger


class TradingSystem:
    """
    Wires signal intake, validation, sizing, execution and position
    management together on two periodic timers.

    The intake timer polls the new-pool feed and runs each candidate through
    the entry pipeline; the price timer fetches prices for every tracked mint,
    advances the state machine and executes the resulting actions. A timer
    firing while its previous cycle is still running does nothing.
    """

    def __init__(self,
                 config: Config,
                 state_machine: PositionStateMachine,
                 validator: SafetyValidator,
                 sizer: PositionSizer,
                 executor,
                 wallet,
                 pool_feed,
                 price_feed,
                 logger: TradingLogger,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.state_machine = state_machine
        self.store = state_machine.store
        self.validator = validator
        self.sizer = sizer
        self.executor = executor
        self.wallet = wallet
        self.pool_feed = pool_feed
        self.price_feed = price_feed
        self.logger = logger
        self.clock = clock

        self.is_running = False
        self.is_accepting_new_trades = True
        self._intake_busy = False
        self._prices_busy = False
        self._timers: List[asyncio.Task] = []
        self._cycle_tasks: List[asyncio.Task] = []

        self.logger.info(f"Trading System Initializing: Dry Run={config.execution.dry_run}, "
                         f"Strategy={config.execution.strategy}, Rebound={config.strategy.rebound_enabled}")
        self.logger.info(f"Risk Parameters: {config.risk}")
        self.logger.info(f"Safety Parameters: {config.safety}")

    async def start(self):
        """Start both timers"""
        self.is_running = True
        self.is_accepting_new_trades = True
        self.logger.critical("Trading System Starting")

        intervals = self.config.intervals
        self._timers = [
            asyncio.create_task(self._timer(intervals.signal_intake_interval, self.run_intake_cycle)),
            asyncio.create_task(self._timer(intervals.price_check_interval, self.run_price_cycle)),
        ]

    async def stop(self):
        """Stop accepting entries, cancel timers and close sessions"""
        self.logger.critical("Initiating trading system shutdown")
        self.is_accepting_new_trades = False
        self.is_running = False

        for task in self._timers + self._cycle_tasks:
            task.cancel()
        await asyncio.gather(*self._timers, *self._cycle_tasks, return_exceptions=True)
        self._timers = []
        self._cycle_tasks = []

        if self.store.positions:
            self.logger.warning(f"Shutting down with {len(self.store.positions)} open positions: "
                                f"{self.store.mints()}")

        self.logger.info("Shutting down services...")
        for service in (self.pool_feed, self.price_feed, self.validator.score_feed, self.executor):
            close = getattr(service, 'close', None)
            if close is not None:
                await close()
        await self.validator.connection.close()
        self.logger.info("Trading system stopped successfully")

    async def _timer(self, interval: float, cycle: Callable[[], Awaitable[None]]):
        while self.is_running:
            task = asyncio.create_task(cycle())
            self._cycle_tasks.append(task)
            task.add_done_callback(self._cycle_done)
            await asyncio.sleep(interval)

    def _cycle_done(self, task: asyncio.Task):
        if task in self._cycle_tasks:
            self._cycle_tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Cycle failed: {task.exception()!r}")

    async def run_intake_cycle(self):
        if self._intake_busy:
            return
        self._intake_busy = True
        try:
            signals = await self.pool_feed.poll()
            for signal in signals:
                if not self.is_accepting_new_trades:
                    break
                await self.handle_signal(signal)
        finally:
            self._intake_busy = False

    async def run_price_cycle(self):
        if self._prices_busy:
            return
        self._prices_busy = True
        try:
            await self._price_cycle()
        finally:
            self._prices_busy = False

    async def handle_signal(self, signal: TokenSignal) -> bool:
        """Entry pipeline for one candidate; True if a position was registered"""
        mint = signal.mint
        if not self.is_accepting_new_trades:
            self.logger.info("System is in shutdown mode - no new positions allowed")
            return False

        if self.store.open_count() >= self.config.risk.max_positions:
            self.logger.info(f"Max positions reached ({self.config.risk.max_positions}), skipping {mint}")
            return False

        # Claimed before the first await so a concurrent signal for the same mint is dropped
        if not self.store.reserve(mint, self.clock()):
            self.logger.info(f"Already holding or entering {mint}, skipping")
            return False

        try:
            verdict = await self.validator.validate(signal)
            if not verdict.is_safe:
                self.logger.info(f"Rejected {signal.name} ({mint}): {verdict.reason.value} {verdict.detail}")
                return False

            balance = await self.wallet.get_sol_balance()
            if balance is None:
                self.logger.warning(f"Balance unavailable, skipping entry on {mint}")
                return False

            trade_config = self.sizer.size(lamports_to_sol(balance), TradeStage.INITIAL_LAUNCH)
            if trade_config.entry_lamports > balance:
                self.logger.warning(f"Insufficient balance for {mint}: need {trade_config.entry_size} SOL, "
                                    f"have {lamports_to_sol(balance)} SOL")
                return False

            self.logger.info(f"BUY {signal.name} ({mint}) for {trade_config.entry_size} SOL")
            result = await self.executor.execute(SOL_MINT, mint, trade_config.entry_lamports)
            if not result.success:
                self.logger.error(f"Entry failed on {mint}: {result.failure.value} {result.detail}")
                return False

            self.state_machine.register(mint, trade_config)
            return True

        finally:
            self.store.release(mint)

    async def _price_cycle(self):
        await self._retry_pending_exits()

        mints = self.store.mints()
        if not mints:
            return

        prices = await self.price_feed.get_prices(mints)
        now = self.clock()

        for mint in mints:
            price = prices.get(mint)
            if price is None:
                continue
            if mint not in self.store.positions:
                continue

            action = self.state_machine.on_price_update(mint, price, now)
            if action == StrategyAction.HOLD:
                continue
            await self._dispatch(mint, action)

    async def _dispatch(self, mint: str, action: StrategyAction):
        if action == StrategyAction.SELL_EXIT:
            if not await self._sell(mint, fraction=1.0):
                self.store.add_pending_exit(mint, self.clock())
                self.logger.warning(f"Exit for {mint} queued for retry")

        elif action == StrategyAction.SELL_PARTIAL:
            position = self.state_machine.get_position(mint)
            fraction = position.config.partial_exit_fraction if position else self.config.risk.partial_exit_fraction
            await self._sell(mint, fraction=fraction)

        elif action == StrategyAction.BUY_REBOUND:
            await self._rebound_entry(mint)

    async def _sell(self, mint: str, fraction: float) -> bool:
        """Sell a share of the fresh on-chain balance; True when nothing is left to retry"""
        balance = await self.wallet.get_token_balance(mint)
        if balance is None:
            self.logger.warning(f"Token balance unavailable for {mint}")
            return False
        if balance == 0:
            self.logger.info(f"No {mint} tokens held, dropping position")
            self.state_machine.discard(mint)
            return True

        amount = balance if fraction >= 1 else fraction_of(balance, fraction)
        if amount <= 0:
            return True

        self.logger.info(f"SELL {amount} of {mint} ({fraction:.0%})")
        result = await self.executor.execute(mint, SOL_MINT, amount)
        if not result.success:
            self.logger.error(f"Sell failed on {mint}: {result.failure.value} {result.detail}")
            return False
        return True

    async def _retry_pending_exits(self):
        for mint in list(self.store.pending_exits):
            self.logger.info(f"Retrying exit for {mint}")
            if await self._sell(mint, fraction=1.0):
                self.store.clear_pending_exit(mint)

    async def _rebound_entry(self, mint: str):
        if not self.is_accepting_new_trades or mint in self.store.pending_exits:
            self.state_machine.discard(mint)
            return

        balance = await self.wallet.get_sol_balance()
        if balance is None:
            self.logger.warning(f"Balance unavailable, abandoning rebound on {mint}")
            self.state_machine.discard(mint)
            return

        trade_config = self.sizer.size(lamports_to_sol(balance), TradeStage.REBOUND_ENTRY)
        if trade_config.entry_lamports > balance:
            self.logger.warning(f"Insufficient balance for rebound on {mint}")
            self.state_machine.discard(mint)
            return

        self.logger.info(f"REBOUND BUY {mint} for {trade_config.entry_size} SOL")
        result = await self.executor.execute(SOL_MINT, mint, trade_config.entry_lamports)
        if not result.success:
            self.logger.error(f"Rebound entry failed on {mint}: {result.failure.value} {result.detail}")
            self.state_machine.discard(mint)
