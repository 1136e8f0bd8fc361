import unittest

from core.types import TakeProfitMode, TradeStage
from risk.position_sizer import PositionSizer
from utils.config import RiskParameters


class PositionSizerTests(unittest.TestCase):
    def test_fixed_fraction_of_balance(self):
        config = PositionSizer(RiskParameters()).size(1.0, TradeStage.INITIAL_LAUNCH)
        self.assertEqual(config.entry_size, 0.1)
        self.assertEqual(config.entry_lamports, 100_000_000)
        self.assertEqual(config.stop_loss_pct, 0.25)
        self.assertEqual(config.slippage_bps, 2000)
        self.assertEqual(config.take_profit_mode, TakeProfitMode.FIXED)

    def test_small_balance_uses_minimum_entry(self):
        config = PositionSizer(RiskParameters()).size(0.005, TradeStage.INITIAL_LAUNCH)
        self.assertEqual(config.entry_size, 0.001)
        self.assertEqual(config.entry_lamports, 1_000_000)

    def test_entry_is_rounded_to_four_decimals(self):
        config = PositionSizer(RiskParameters()).size(1.23456, TradeStage.INITIAL_LAUNCH)
        self.assertEqual(config.entry_size, 0.1235)
        self.assertEqual(config.entry_lamports, 123_500_000)

    def test_rebound_stage_uses_tight_stop(self):
        config = PositionSizer(RiskParameters()).size(2.0, TradeStage.REBOUND_ENTRY)
        self.assertEqual(config.stop_loss_pct, 0.025)
        self.assertEqual(config.entry_size, 0.2)

    def test_capital_cap_limits_sizing(self):
        sizer = PositionSizer(RiskParameters(capital_sol=0.5))
        self.assertEqual(sizer.size(10.0, TradeStage.INITIAL_LAUNCH).entry_size, 0.05)

    def test_negative_balance_floors_to_minimum(self):
        config = PositionSizer(RiskParameters()).size(-3.0, TradeStage.INITIAL_LAUNCH)
        self.assertEqual(config.entry_size, 0.001)

    def test_sizing_is_rederived_per_call(self):
        sizer = PositionSizer(RiskParameters(entry_size_pct=0.2))
        self.assertEqual(sizer.size(1.0, TradeStage.INITIAL_LAUNCH).entry_size, 0.2)
        self.assertEqual(sizer.size(0.5, TradeStage.INITIAL_LAUNCH).entry_size, 0.1)


if __name__ == "__main__":
    unittest.main()
