from dataclasses import dataclass
from typing import List
import logging
import pandas as pd
from .base_strategy import BaseStrategy
from core.aggregator import Candle


@dataclass
class Signal:
    is_valid: bool
    rsi: float = 50.0
    engulfing: bool = False


class ReboundStrategy(BaseStrategy):
    """
    Re-entry signal after a stop-out: RSI oversold plus a bullish engulfing
    pair on the two most recent closed candles.
    """

    def __init__(self,
                 rsi_period: int = 14,
                 oversold_threshold: float = 30.0,
                 min_candles: int = 3,
                 logger: logging.Logger = None):
        super().__init__()
        self.rsi_period = rsi_period
        self.oversold_threshold = oversold_threshold
        self.min_candles = min_candles
        self.logger = logger

    def generate_signal(self, candles: List[Candle]) -> Signal:
        if len(candles) < max(self.min_candles, 2):
            return Signal(is_valid=False)

        rsi = self.calculate_rsi(candles)
        engulfing = self.is_bullish_engulfing(candles[-2], candles[-1])

        return Signal(
            is_valid=rsi < self.oversold_threshold and engulfing,
            rsi=rsi,
            engulfing=engulfing,
        )

    def calculate_rsi(self, candles: List[Candle]) -> float:
        """Simple (non-smoothed) RSI over the last rsi_period close-to-close moves; neutral 50 when history is short"""
        if len(candles) < self.rsi_period + 1:
            return 50.0

        closes = pd.Series([c.close for c in candles], dtype=float)
        moves = closes.diff().iloc[-self.rsi_period:]
        gains = float(moves[moves > 0].sum())
        losses = float(-moves[moves < 0].sum())

        if losses == 0:
            return 100.0
        return 100.0 - (100.0 / (1.0 + gains / losses))

    @staticmethod
    def is_bullish_engulfing(prev: Candle, curr: Candle) -> bool:
        return (
            prev.is_bearish
            and curr.is_bullish
            and curr.open <= prev.close
            and curr.close >= prev.open
        )
