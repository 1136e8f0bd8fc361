from core.types import TakeProfitMode, TradeConfiguration, TradeStage, sol_to_lamports
from utils.config import RiskParameters


class PositionSizer:
    def __init__(self, risk_params: RiskParameters):
        self.risk_params = risk_params

    def size(self, account_balance: float, stage: TradeStage) -> TradeConfiguration:
        """Fixed fraction of the current balance, floored at the minimum viable trade"""
        params = self.risk_params
        balance = max(account_balance, 0.0)
        if params.capital_sol is not None:
            balance = min(balance, params.capital_sol)

        entry_size = balance * params.entry_size_pct
        if entry_size < params.min_entry_sol:
            entry_size = params.min_entry_sol
        entry_size = round(entry_size, 4)

        if stage == TradeStage.REBOUND_ENTRY:
            stop_loss_pct = params.rebound_stop_loss_pct
        else:
            stop_loss_pct = params.initial_stop_loss_pct

        return TradeConfiguration(
            entry_size=entry_size,
            entry_lamports=sol_to_lamports(entry_size),
            slippage_bps=params.slippage_bps,
            stop_loss_pct=stop_loss_pct,
            trailing_enabled=params.trailing_enabled,
            take_profit_mode=TakeProfitMode(params.take_profit_mode),
            take_profit_pct=params.partial_take_profit_pct,
            partial_exit_fraction=params.partial_exit_fraction,
        )
