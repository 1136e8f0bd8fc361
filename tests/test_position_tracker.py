import unittest

from core.events import PositionPhase, StrategyAction
from core.position_tracker import PositionStateMachine, PositionStore
from core.types import TakeProfitMode, TradeConfiguration
from strategies.rebound_strategy import Signal
from utils.config import RiskParameters, StrategyConfig
from utils.logger import TradingLogger

MINT = "So11111111111111111111111111111111111111112"
LOGGER = TradingLogger("tests.position_tracker", log_dir=None)


def make_machine(risk: RiskParameters = None, strategy: StrategyConfig = None) -> PositionStateMachine:
    return PositionStateMachine(risk or RiskParameters(), strategy or StrategyConfig(), LOGGER)


class PositionStoreTests(unittest.TestCase):
    def test_reserve_is_exclusive_until_released(self):
        store = PositionStore()
        self.assertTrue(store.reserve(MINT, 1.0))
        self.assertFalse(store.reserve(MINT, 2.0))
        self.assertEqual(store.open_count(), 1)
        store.release(MINT)
        self.assertTrue(store.reserve(MINT, 3.0))

    def test_reserve_refuses_open_position(self):
        machine = make_machine()
        machine.on_price_update(MINT, 1.0, 0)
        self.assertFalse(machine.store.reserve(MINT))

    def test_pending_exit_bookkeeping(self):
        store = PositionStore()
        store.add_pending_exit(MINT, 5.0)
        store.add_pending_exit(MINT, 9.0)
        self.assertEqual(store.pending_exits[MINT], 5.0)
        store.clear_pending_exit(MINT)
        self.assertNotIn(MINT, store.pending_exits)


class PositionStateMachineTests(unittest.TestCase):
    def test_first_tick_activates_unknown_mint(self):
        machine = make_machine()
        action = machine.on_price_update(MINT, 100.0, 0)
        self.assertEqual(action, StrategyAction.HOLD)
        position = machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.ACTIVE)
        self.assertEqual(position.entry_price, 100.0)
        self.assertEqual(position.highest_price, 100.0)
        self.assertAlmostEqual(position.stop_loss_price, 75.0)

    def test_registered_position_uses_its_own_stop(self):
        machine = make_machine()
        config = TradeConfiguration(entry_size=0.1, entry_lamports=100_000_000, slippage_bps=2000, stop_loss_pct=0.10)
        machine.register(MINT, config)
        self.assertEqual(machine.get_position(MINT).phase, PositionPhase.MONITORING)

        machine.on_price_update(MINT, 2.0, 0)
        self.assertAlmostEqual(machine.get_position(MINT).stop_loss_price, 1.8)

    def test_register_twice_is_refused(self):
        machine = make_machine()
        config = TradeConfiguration(entry_size=0.1, entry_lamports=100_000_000, slippage_bps=2000, stop_loss_pct=0.10)
        machine.register(MINT, config)
        with self.assertRaises(ValueError):
            machine.register(MINT, config)

    def test_invalid_price_is_ignored(self):
        machine = make_machine()
        for bad in (0, -1.0, float("nan"), float("inf"), None):
            self.assertEqual(machine.on_price_update(MINT, bad, 0), StrategyAction.HOLD)
        self.assertIsNone(machine.get_position(MINT))

    def test_stop_loss_never_decreases(self):
        machine = make_machine()
        prices = [100, 110, 105, 130, 125, 140, 135, 139, 141, 120]
        stops = []
        for t, price in enumerate(prices):
            action = machine.on_price_update(MINT, float(price), t)
            self.assertEqual(action, StrategyAction.HOLD)
            stops.append(machine.get_position(MINT).stop_loss_price)

        self.assertEqual(stops, sorted(stops))
        self.assertAlmostEqual(stops[-1], 141 * 0.8)
        self.assertEqual(machine.get_position(MINT).highest_price, 141)

    def test_trailing_stop_exit_then_fresh_entry(self):
        machine = make_machine()
        self.assertEqual(machine.on_price_update(MINT, 100.0, 0), StrategyAction.HOLD)
        self.assertEqual(machine.on_price_update(MINT, 150.0, 1), StrategyAction.HOLD)
        self.assertAlmostEqual(machine.get_position(MINT).stop_loss_price, 120.0)

        self.assertEqual(machine.on_price_update(MINT, 119.0, 2), StrategyAction.SELL_EXIT)
        self.assertIsNone(machine.get_position(MINT))

        # A later tick for the same mint starts a new lifetime
        self.assertEqual(machine.on_price_update(MINT, 119.0, 3), StrategyAction.HOLD)
        position = machine.get_position(MINT)
        self.assertEqual(position.entry_price, 119.0)
        self.assertAlmostEqual(position.stop_loss_price, 119.0 * 0.75)

    def test_trailing_disabled_keeps_initial_stop(self):
        machine = make_machine(RiskParameters(trailing_enabled=False, take_profit_mode='dynamic'))
        machine.on_price_update(MINT, 100.0, 0)
        machine.on_price_update(MINT, 300.0, 1)
        position = machine.get_position(MINT)
        self.assertEqual(position.highest_price, 300.0)
        self.assertAlmostEqual(position.stop_loss_price, 75.0)

    def test_partial_take_profit_moves_stop_to_entry(self):
        machine = make_machine(RiskParameters(trailing_stop_pct=0.6))
        machine.on_price_update(MINT, 100.0, 0)

        action = machine.on_price_update(MINT, 200.0, 1)
        self.assertEqual(action, StrategyAction.SELL_PARTIAL)
        position = machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.PARTIAL_EXITED)
        self.assertTrue(position.partial_exit_done)
        self.assertEqual(position.stop_loss_price, 100.0)

        # Only one partial exit per position
        self.assertEqual(machine.on_price_update(MINT, 250.0, 2), StrategyAction.HOLD)
        self.assertAlmostEqual(position.stop_loss_price, 100.0)
        self.assertEqual(machine.on_price_update(MINT, 99.0, 3), StrategyAction.SELL_EXIT)
        self.assertIsNone(machine.get_position(MINT))

    def test_partial_take_profit_keeps_higher_trailing_stop(self):
        machine = make_machine()
        machine.on_price_update(MINT, 100.0, 0)
        self.assertEqual(machine.on_price_update(MINT, 200.0, 1), StrategyAction.SELL_PARTIAL)
        self.assertAlmostEqual(machine.get_position(MINT).stop_loss_price, 160.0)

    def test_dynamic_mode_never_sells_partially(self):
        machine = make_machine(RiskParameters(take_profit_mode='dynamic'))
        machine.on_price_update(MINT, 100.0, 0)
        for t, price in enumerate([150.0, 200.0, 400.0], start=1):
            self.assertEqual(machine.on_price_update(MINT, price, t), StrategyAction.HOLD)
        self.assertEqual(machine.get_position(MINT).phase, PositionPhase.ACTIVE)

    def test_max_hold_time_forces_exit(self):
        machine = make_machine(RiskParameters(max_hold_time_minutes=30))
        machine.on_price_update(MINT, 100.0, 0)
        self.assertEqual(machine.on_price_update(MINT, 101.0, 1799), StrategyAction.HOLD)
        self.assertEqual(machine.on_price_update(MINT, 101.0, 1800), StrategyAction.SELL_EXIT)
        self.assertIsNone(machine.get_position(MINT))

    def test_discard_drops_without_action(self):
        machine = make_machine()
        machine.on_price_update(MINT, 100.0, 0)
        machine.discard(MINT)
        self.assertIsNone(machine.get_position(MINT))
        machine.discard(MINT)


class ReboundPhaseTests(unittest.TestCase):
    def setUp(self):
        self.machine = make_machine(
            RiskParameters(max_hold_time_minutes=30),
            StrategyConfig(rebound_enabled=True),
        )
        self.signal = Signal(is_valid=False)
        self.machine.rebound_strategy.generate_signal = lambda candles: self.signal

        self.machine.on_price_update(MINT, 100.0, 0)
        self.assertEqual(self.machine.on_price_update(MINT, 70.0, 60), StrategyAction.SELL_EXIT)

    def test_stop_out_waits_for_rebound(self):
        position = self.machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.AWAITING_REBOUND)
        self.assertEqual(self.machine.on_price_update(MINT, 65.0, 120), StrategyAction.HOLD)

    def test_rebound_signal_reenters_with_tight_stop(self):
        self.signal = Signal(is_valid=True, rsi=22.0, engulfing=True)
        self.assertEqual(self.machine.on_price_update(MINT, 80.0, 180), StrategyAction.BUY_REBOUND)

        position = self.machine.get_position(MINT)
        self.assertEqual(position.phase, PositionPhase.ACTIVE_REBOUND)
        self.assertEqual(position.entry_price, 80.0)
        self.assertAlmostEqual(position.stop_loss_price, 78.0)

        # Rebound trades close for good on their stop
        self.assertEqual(self.machine.on_price_update(MINT, 77.0, 240), StrategyAction.SELL_EXIT)
        self.assertIsNone(self.machine.get_position(MINT))

    def test_rebound_stop_trails_tightly(self):
        self.signal = Signal(is_valid=True, rsi=22.0, engulfing=True)
        self.machine.on_price_update(MINT, 80.0, 180)
        self.machine.on_price_update(MINT, 100.0, 200)
        self.assertAlmostEqual(self.machine.get_position(MINT).stop_loss_price, 97.5)

    def test_waiting_expires_silently(self):
        self.assertEqual(self.machine.on_price_update(MINT, 65.0, 60 + 1800), StrategyAction.HOLD)
        self.assertIsNone(self.machine.get_position(MINT))

    def test_candles_keep_accumulating_while_waiting(self):
        for minute in range(2, 6):
            self.machine.on_price_update(MINT, 60.0 + minute, minute * 60)
        self.assertEqual(len(self.machine.get_position(MINT).candles.closed_candles()), 5)


if __name__ == "__main__":
    unittest.main()
