import asyncio
import os
import tempfile
import unittest

from core.events import PositionPhase
from core.position_tracker import PositionStateMachine
from core.trading_system import TradingSystem
from core.types import (
    ExecutionResult, FailureReason, SafetyReason, SafetyVerdict, TokenSignal, TradeStage
)
from execution.constants import SOL_MINT
from risk.position_sizer import PositionSizer
from strategies.rebound_strategy import Signal
from utils.config import Config
from utils.logger import TradingLogger

LOGGER = TradingLogger("tests.trading_system", log_dir=None)
MISSING = os.path.join(tempfile.gettempdir(), "no-such-sniper-config.yaml")
MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
OTHER_MINT = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"


def make_signal(mint: str = MINT) -> TokenSignal:
    return TokenSignal(mint=mint, name="CAT", market_cap=9000.0, liquidity=3000.0,
                       volume_m5=500.0, tx_count_m5=9, pool_age_minutes=3.0)


class FakeConnection:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakeValidator:
    def __init__(self, verdict: SafetyVerdict = None):
        self.verdict = verdict or SafetyVerdict.accept()
        self.calls = []
        self.score_feed = None
        self.connection = FakeConnection()

    async def validate(self, signal):
        self.calls.append(signal.mint)
        # Yield a few times, like the real network checks
        for _ in range(3):
            await asyncio.sleep(0)
        return self.verdict


class FakeExecutor:
    def __init__(self):
        self.calls = []
        self.results = []
        self.closed = False

    async def execute(self, from_mint, to_mint, raw_amount):
        self.calls.append((from_mint, to_mint, raw_amount))
        await asyncio.sleep(0)
        if self.results:
            return self.results.pop(0)
        return ExecutionResult.ok(f"bundle-{len(self.calls)}")

    async def close(self):
        self.closed = True


class FakeWallet:
    def __init__(self, sol_lamports=1_000_000_000, tokens=None):
        self.sol_lamports = sol_lamports
        self.tokens = tokens if tokens is not None else {}

    async def get_sol_balance(self):
        return self.sol_lamports

    async def get_token_balance(self, mint):
        return self.tokens.get(mint, 0)


class FakePoolFeed:
    def __init__(self, *batches):
        self.batches = list(batches)
        self.closed = False

    async def poll(self):
        return self.batches.pop(0) if self.batches else []

    async def close(self):
        self.closed = True


class FakePriceFeed:
    def __init__(self):
        self.prices = {}
        self.calls = []
        self.closed = False

    async def get_prices(self, mints):
        self.calls.append(list(mints))
        return {mint: self.prices[mint] for mint in mints if mint in self.prices}

    async def close(self):
        self.closed = True


class TradingSystemTestCase(unittest.IsolatedAsyncioTestCase):
    def make_system(self, verdict=None, wallet=None, pool_batches=(), **risk_overrides) -> TradingSystem:
        self.config = Config(MISSING, env={})
        for name, value in risk_overrides.items():
            setattr(self.config.risk, name, value)
        self.now = 0.0
        self.validator = FakeValidator(verdict)
        self.executor = FakeExecutor()
        self.wallet = wallet or FakeWallet()
        self.pool_feed = FakePoolFeed(*pool_batches)
        self.price_feed = FakePriceFeed()
        self.system = TradingSystem(
            config=self.config,
            state_machine=PositionStateMachine(self.config.risk, self.config.strategy, LOGGER),
            validator=self.validator,
            sizer=PositionSizer(self.config.risk),
            executor=self.executor,
            wallet=self.wallet,
            pool_feed=self.pool_feed,
            price_feed=self.price_feed,
            logger=LOGGER,
            clock=lambda: self.now,
        )
        return self.system

    def open_position(self, mint: str = MINT):
        config = PositionSizer(self.config.risk).size(1.0, TradeStage.INITIAL_LAUNCH)
        self.system.state_machine.register(mint, config)

    async def tick(self, price: float, mint: str = MINT, at: float = None):
        self.now = at if at is not None else self.now + 1
        self.price_feed.prices[mint] = price
        await self.system.run_price_cycle()


class EntryPipelineTests(TradingSystemTestCase):
    async def test_safe_signal_is_bought_and_registered(self):
        system = self.make_system()
        self.assertTrue(await system.handle_signal(make_signal()))

        self.assertEqual(self.executor.calls, [(SOL_MINT, MINT, 100_000_000)])
        position = system.state_machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.MONITORING)
        self.assertEqual(position.config.entry_lamports, 100_000_000)
        self.assertEqual(system.store.pending_entries, {})

    async def test_concurrent_signals_for_one_mint_enter_once(self):
        system = self.make_system()
        results = await asyncio.gather(system.handle_signal(make_signal()), system.handle_signal(make_signal()))
        self.assertEqual(sorted(results), [False, True])
        self.assertEqual(len(self.executor.calls), 1)
        self.assertEqual(self.validator.calls, [MINT])

    async def test_open_mint_is_not_bought_again(self):
        system = self.make_system()
        await system.handle_signal(make_signal())
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(len(self.executor.calls), 1)

    async def test_unsafe_candidate_never_executes(self):
        verdict = SafetyVerdict.reject(SafetyReason.AUTHORITY_PRESENT, "freeze authority set")
        system = self.make_system(verdict=verdict)
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(self.executor.calls, [])
        self.assertIsNone(system.state_machine.get_position(MINT))
        self.assertEqual(system.store.pending_entries, {})

    async def test_unknown_balance_skips_entry(self):
        system = self.make_system(wallet=FakeWallet(sol_lamports=None))
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(self.executor.calls, [])

    async def test_balance_below_minimum_entry_skips(self):
        system = self.make_system(wallet=FakeWallet(sol_lamports=500_000))
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(self.executor.calls, [])

    async def test_failed_entry_is_not_registered(self):
        system = self.make_system()
        self.executor.results.append(ExecutionResult.failed(FailureReason.NO_QUOTE))
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertIsNone(system.state_machine.get_position(MINT))
        self.assertTrue(system.store.reserve(MINT))

    async def test_max_positions_blocks_entries(self):
        system = self.make_system(max_positions=1)
        self.open_position(OTHER_MINT)
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(self.validator.calls, [])

    async def test_no_entries_during_shutdown(self):
        system = self.make_system()
        system.is_accepting_new_trades = False
        self.assertFalse(await system.handle_signal(make_signal()))
        self.assertEqual(self.validator.calls, [])

    async def test_intake_cycle_handles_polled_signals(self):
        system = self.make_system(pool_batches=([make_signal(MINT), make_signal(OTHER_MINT)],))
        await system.run_intake_cycle()
        self.assertEqual([call[1] for call in self.executor.calls], [MINT, OTHER_MINT])


class PriceCycleTests(TradingSystemTestCase):
    async def test_trailing_stop_exit_sells_full_balance(self):
        system = self.make_system(wallet=FakeWallet(tokens={MINT: 5_000}))
        self.open_position()

        await self.tick(100.0)
        await self.tick(150.0)
        self.assertEqual(self.executor.calls, [])
        await self.tick(119.0)

        self.assertEqual(self.executor.calls, [(MINT, SOL_MINT, 5_000)])
        self.assertIsNone(system.state_machine.get_position(MINT))

    async def test_partial_take_profit_sells_fraction(self):
        system = self.make_system(wallet=FakeWallet(tokens={MINT: 5_001}))
        self.open_position()

        await self.tick(100.0)
        await self.tick(200.0)

        self.assertEqual(self.executor.calls, [(MINT, SOL_MINT, 2_500)])
        self.assertEqual(system.state_machine.get_position(MINT).phase, PositionPhase.PARTIAL_EXITED)

    async def test_failed_exit_is_retried_next_cycle(self):
        system = self.make_system(wallet=FakeWallet(tokens={MINT: 5_000}))
        self.open_position()
        self.executor.results.append(ExecutionResult.failed(FailureReason.RATE_LIMITED))

        await self.tick(100.0)
        await self.tick(70.0)
        self.assertIn(MINT, system.store.pending_exits)

        await system.run_price_cycle()
        self.assertNotIn(MINT, system.store.pending_exits)
        self.assertEqual(self.executor.calls, [(MINT, SOL_MINT, 5_000), (MINT, SOL_MINT, 5_000)])

    async def test_unknown_token_balance_queues_exit(self):
        wallet = FakeWallet()
        wallet.get_token_balance = self.unknown_balance
        system = self.make_system(wallet=wallet)
        self.open_position()

        await self.tick(100.0)
        await self.tick(70.0)
        self.assertIn(MINT, system.store.pending_exits)
        self.assertEqual(self.executor.calls, [])

    async def unknown_balance(self, mint):
        return None

    async def test_zero_balance_drops_position(self):
        system = self.make_system(wallet=FakeWallet(tokens={}))
        self.open_position()

        await self.tick(100.0)
        await self.tick(200.0)

        self.assertEqual(self.executor.calls, [])
        self.assertIsNone(system.state_machine.get_position(MINT))

    async def test_prices_requested_in_insertion_order(self):
        system = self.make_system()
        self.open_position(OTHER_MINT)
        self.open_position(MINT)
        await system.run_price_cycle()
        self.assertEqual(self.price_feed.calls, [[OTHER_MINT, MINT]])

    async def test_missing_price_leaves_position_untouched(self):
        system = self.make_system()
        self.open_position()
        await system.run_price_cycle()
        self.assertEqual(system.state_machine.get_position(MINT).phase, PositionPhase.MONITORING)

    async def test_overlapping_cycles_are_skipped(self):
        system = self.make_system(pool_batches=([make_signal()],))
        self.open_position(OTHER_MINT)

        system._prices_busy = True
        await system.run_price_cycle()
        self.assertEqual(self.price_feed.calls, [])

        system._intake_busy = True
        await system.run_intake_cycle()
        self.assertEqual(self.validator.calls, [])


class ReboundEntryTests(TradingSystemTestCase):
    async def asyncSetUp(self):
        system = self.make_system(wallet=FakeWallet(tokens={MINT: 5_000}))
        self.config.strategy.rebound_enabled = True
        self.signal = Signal(is_valid=False)
        system.state_machine.rebound_strategy.generate_signal = lambda candles: self.signal
        self.open_position()

        await self.tick(100.0, at=0)
        await self.tick(70.0, at=60)
        self.assertEqual(system.state_machine.get_position(MINT).phase, PositionPhase.AWAITING_REBOUND)

    async def test_rebound_signal_buys_with_rebound_sizing(self):
        self.signal = Signal(is_valid=True, rsi=20.0, engulfing=True)
        await self.tick(80.0, at=120)

        self.assertEqual(self.executor.calls[-1], (SOL_MINT, MINT, 100_000_000))
        position = self.system.state_machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.ACTIVE_REBOUND)
        self.assertAlmostEqual(position.stop_loss_price, 78.0)

    async def test_failed_rebound_entry_drops_position(self):
        self.signal = Signal(is_valid=True, rsi=20.0, engulfing=True)
        self.executor.results.append(ExecutionResult.failed(FailureReason.RELAY_REJECTED))
        await self.tick(80.0, at=120)
        self.assertIsNone(self.system.state_machine.get_position(MINT))


class LifecycleTests(TradingSystemTestCase):
    async def test_start_and_stop(self):
        system = self.make_system()
        self.config.intervals.signal_intake_interval = 60
        self.config.intervals.price_check_interval = 60

        await system.start()
        self.assertTrue(system.is_running)
        await asyncio.sleep(0)
        await system.stop()

        self.assertFalse(system.is_running)
        self.assertFalse(system.is_accepting_new_trades)
        self.assertEqual(system._timers, [])
        self.assertTrue(self.pool_feed.closed)
        self.assertTrue(self.price_feed.closed)
        self.assertTrue(self.executor.closed)
        self.assertTrue(self.validator.connection.closed)


if __name__ == "__main__":
    unittest.main()
