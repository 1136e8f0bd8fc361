from enum import Enum


class StrategyAction(Enum):
    """What the orchestrator should do after a price tick"""
    HOLD = "HOLD"
    SELL_PARTIAL = "SELL_PARTIAL"
    SELL_EXIT = "SELL_EXIT"
    BUY_REBOUND = "BUY_REBOUND"


class PositionPhase(Enum):
    MONITORING = "MONITORING"
    ACTIVE = "ACTIVE"
    PARTIAL_EXITED = "PARTIAL_EXITED"
    AWAITING_REBOUND = "AWAITING_REBOUND"
    ACTIVE_REBOUND = "ACTIVE_REBOUND"
    CLOSED = "CLOSED"

    @property
    def holds_tokens(self) -> bool:
        return self in (PositionPhase.ACTIVE, PositionPhase.PARTIAL_EXITED, PositionPhase.ACTIVE_REBOUND)
