from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional


@dataclass
class Candle:
    open: float
    high: float
    low: float
    close: float
    timestamp: int  # Candle start, seconds

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


class CandleAggregator:
    """Folds price ticks into fixed-timeframe OHLC candles, keeping at most max_candles closed ones"""

    def __init__(self, timeframe_seconds: int = 60, max_candles: int = 50):
        self.timeframe_seconds = timeframe_seconds
        self.max_candles = max_candles
        self.candles: Deque[Candle] = deque(maxlen=max_candles)
        self.current_candle: Optional[Candle] = None

    def get_candle_time(self, timestamp: float) -> int:
        """Normalize timestamp to candle start time"""
        total_seconds = int(timestamp)
        return total_seconds - (total_seconds % self.timeframe_seconds)

    def update(self, price: float, timestamp: float) -> bool:
        """Returns True if the tick closed the previous candle"""
        candle_time = self.get_candle_time(timestamp)

        if self.current_candle is None:
            self.current_candle = Candle(price, price, price, price, candle_time)
            return False

        # Late ticks are folded into the running candle
        if candle_time > self.current_candle.timestamp:
            self.candles.append(self.current_candle)
            self.current_candle = Candle(price, price, price, price, candle_time)
            return True

        self.current_candle.high = max(self.current_candle.high, price)
        self.current_candle.low = min(self.current_candle.low, price)
        self.current_candle.close = price
        return False

    def closed_candles(self) -> List[Candle]:
        return list(self.candles)
