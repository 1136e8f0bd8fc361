from typing import List
from core.aggregator import Candle

class BaseStrategy:
    """Base class for candle-driven entry signals"""

    def generate_signal(self, candles: List[Candle]):
        """Generate an entry signal from closed candles"""
        raise NotImplementedError
