from dataclasses import dataclass
from typing import Dict, List, Optional
from logging import Logger
import math
from core.aggregator import CandleAggregator
from core.events import PositionPhase, StrategyAction
from core.types import TakeProfitMode, TradeConfiguration
from strategies.rebound_strategy import ReboundStrategy
from utils.config import RiskParameters, StrategyConfig


@dataclass
class Position:
    """Represents a tracked position; owned by the PositionStateMachine"""
    mint: str
    config: TradeConfiguration
    candles: CandleAggregator
    phase: PositionPhase = PositionPhase.MONITORING
    entry_price: float = 0.0
    highest_price: float = 0.0
    stop_loss_price: float = 0.0
    trailing_pct: float = 0.0
    partial_exit_done: bool = False
    opened_at: Optional[float] = None
    phase_changed_at: Optional[float] = None


class PositionStore:
    """Open positions plus in-flight entries and exits, keyed by mint"""

    def __init__(self):
        # Core state tracking (dicts keep insertion order)
        self.positions: Dict[str, Position] = {}
        self.pending_entries: Dict[str, float] = {}  # mint -> reserved at
        self.pending_exits: Dict[str, float] = {}    # mint -> queued at

    def get(self, mint: str) -> Optional[Position]:
        return self.positions.get(mint)

    def add(self, position: Position) -> None:
        if position.mint in self.positions:
            raise ValueError(f"Position already tracked for {position.mint}")
        self.positions[position.mint] = position

    def remove(self, mint: str) -> Optional[Position]:
        return self.positions.pop(mint, None)

    def mints(self) -> List[str]:
        return list(self.positions)

    def open_count(self) -> int:
        return len(self.positions) + len(self.pending_entries)

    def reserve(self, mint: str, now: float = 0.0) -> bool:
        """Claim a mint for an entry; False if it is already open or in flight"""
        if mint in self.positions or mint in self.pending_entries:
            return False
        self.pending_entries[mint] = now
        return True

    def release(self, mint: str) -> None:
        self.pending_entries.pop(mint, None)

    def add_pending_exit(self, mint: str, now: float = 0.0) -> None:
        self.pending_exits.setdefault(mint, now)

    def clear_pending_exit(self, mint: str) -> None:
        self.pending_exits.pop(mint, None)


class PositionStateMachine:
    """
    Drives every tracked position through its phases on price ticks.

    MONITORING -> ACTIVE -> (PARTIAL_EXITED) -> CLOSED, optionally
    AWAITING_REBOUND -> ACTIVE_REBOUND -> CLOSED when rebound re-entry is
    enabled. The stop-loss of a position only ever moves up; all timing comes
    from the timestamps passed in, so replaying the same ticks gives the same
    actions.
    """

    def __init__(self,
                 risk_params: RiskParameters,
                 strategy_config: StrategyConfig,
                 logger: Logger,
                 store: Optional[PositionStore] = None):
        self.risk_params = risk_params
        self.strategy_config = strategy_config
        self.logger = logger
        self.store = store or PositionStore()
        self.rebound_strategy = ReboundStrategy(
            rsi_period=strategy_config.rsi_period,
            oversold_threshold=strategy_config.rsi_oversold,
            min_candles=strategy_config.min_candles,
            logger=logger,
        )

    def _default_config(self) -> TradeConfiguration:
        params = self.risk_params
        return TradeConfiguration(
            entry_size=0.0,
            entry_lamports=0,
            slippage_bps=params.slippage_bps,
            stop_loss_pct=params.initial_stop_loss_pct,
            trailing_enabled=params.trailing_enabled,
            take_profit_mode=TakeProfitMode(params.take_profit_mode),
            take_profit_pct=params.partial_take_profit_pct,
            partial_exit_fraction=params.partial_exit_fraction,
        )

    def _new_position(self, mint: str, config: TradeConfiguration) -> Position:
        return Position(
            mint=mint,
            config=config,
            candles=CandleAggregator(
                timeframe_seconds=self.strategy_config.candle_timeframe_seconds,
                max_candles=self.strategy_config.max_candles,
            ),
        )

    def register(self, mint: str, config: TradeConfiguration) -> Position:
        """Track a freshly bought mint; it becomes ACTIVE on its first price tick"""
        position = self._new_position(mint, config)
        self.store.add(position)
        self.logger.info(f"Registered position for {mint} (stop {config.stop_loss_pct:.0%})")
        return position

    def discard(self, mint: str) -> None:
        """Stop tracking a mint without emitting an action"""
        position = self.store.remove(mint)
        if position:
            position.phase = PositionPhase.CLOSED
            self.logger.info(f"Dropped {mint} from tracking")

    def get_position(self, mint: str) -> Optional[Position]:
        return self.store.get(mint)

    def on_price_update(self, mint: str, price: float, timestamp: float) -> StrategyAction:
        """Advance the position for mint and return the action to execute"""
        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            self.logger.warning(f"Ignoring invalid price for {mint}: {price!r}")
            return StrategyAction.HOLD

        position = self.store.get(mint)
        if position is None:
            position = self._new_position(mint, self._default_config())
            self.store.add(position)

        position.candles.update(price, timestamp)

        if position.phase == PositionPhase.MONITORING:
            self._activate(position, price, timestamp)
            return StrategyAction.HOLD

        if position.phase.holds_tokens:
            return self._manage_open_position(position, price, timestamp)

        if position.phase == PositionPhase.AWAITING_REBOUND:
            return self._check_rebound(position, price, timestamp)

        return StrategyAction.HOLD

    def _activate(self, position: Position, price: float, timestamp: float) -> None:
        position.phase = PositionPhase.ACTIVE
        position.entry_price = price
        position.highest_price = price
        position.stop_loss_price = price * (1 - position.config.stop_loss_pct)
        position.trailing_pct = self.risk_params.trailing_stop_pct
        position.opened_at = timestamp
        position.phase_changed_at = timestamp
        self.logger.info(
            f"Position {position.mint} ACTIVE: entry={price:.10f} stop={position.stop_loss_price:.10f}"
        )

    def _raise_stop(self, position: Position, candidate: float) -> None:
        if candidate > position.stop_loss_price:
            position.stop_loss_price = candidate

    def _manage_open_position(self, position: Position, price: float, timestamp: float) -> StrategyAction:
        config = position.config

        # Trailing stop follows new highs only
        if price > position.highest_price:
            position.highest_price = price
            if config.trailing_enabled:
                self._raise_stop(position, price * (1 - position.trailing_pct))

        if (position.phase == PositionPhase.ACTIVE
                and config.take_profit_mode == TakeProfitMode.FIXED
                and not position.partial_exit_done
                and price >= position.entry_price * (1 + config.take_profit_pct)):
            position.phase = PositionPhase.PARTIAL_EXITED
            position.phase_changed_at = timestamp
            position.partial_exit_done = True
            self._raise_stop(position, position.entry_price)
            self.logger.info(
                f"Take profit on {position.mint} at {price:.10f}: selling "
                f"{config.partial_exit_fraction:.0%}, stop locked at {position.stop_loss_price:.10f}"
            )
            return StrategyAction.SELL_PARTIAL

        if price <= position.stop_loss_price:
            self.logger.warning(
                f"Stop loss hit on {position.mint} ({position.phase.value}): "
                f"price={price:.10f} stop={position.stop_loss_price:.10f}"
            )
            return self._stop_out(position, timestamp)

        max_hold = self.risk_params.max_hold_time_minutes
        if max_hold is not None and position.opened_at is not None \
                and timestamp - position.opened_at >= max_hold * 60:
            self.logger.warning(f"Max hold time reached on {position.mint}, exiting")
            return self._stop_out(position, timestamp)

        return StrategyAction.HOLD

    def _stop_out(self, position: Position, timestamp: float) -> StrategyAction:
        if self.strategy_config.rebound_enabled and position.phase != PositionPhase.ACTIVE_REBOUND:
            position.phase = PositionPhase.AWAITING_REBOUND
            position.phase_changed_at = timestamp
            self.logger.info(f"{position.mint} waiting for a rebound signal")
        else:
            position.phase = PositionPhase.CLOSED
            self.store.remove(position.mint)
            self.logger.info(f"{position.mint} CLOSED")
        return StrategyAction.SELL_EXIT

    def _check_rebound(self, position: Position, price: float, timestamp: float) -> StrategyAction:
        max_hold = self.risk_params.max_hold_time_minutes
        if max_hold is not None and position.phase_changed_at is not None \
                and timestamp - position.phase_changed_at >= max_hold * 60:
            self.logger.info(f"No rebound on {position.mint} within {max_hold} minutes, closing")
            self.discard(position.mint)
            return StrategyAction.HOLD

        signal = self.rebound_strategy.generate_signal(position.candles.closed_candles())
        if not signal.is_valid:
            return StrategyAction.HOLD

        position.phase = PositionPhase.ACTIVE_REBOUND
        position.entry_price = price
        position.highest_price = price
        position.trailing_pct = self.risk_params.rebound_stop_loss_pct
        position.stop_loss_price = price * (1 - self.risk_params.rebound_stop_loss_pct)
        position.opened_at = timestamp
        position.phase_changed_at = timestamp
        self.logger.info(f"Rebound signal on {position.mint}: RSI={signal.rsi:.1f}, re-entering at {price:.10f}")
        return StrategyAction.BUY_REBOUND
