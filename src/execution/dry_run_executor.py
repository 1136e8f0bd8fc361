from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from logging import Logger
import uuid
from core.types import ExecutionResult, FailureReason
from .constants import SOL_MINT


@dataclass
class SimulatedTransaction:
    timestamp: datetime
    from_mint: str
    to_mint: str
    amount: int
    bundle_id: str
    network_fee: int = 5_000  # Lamports


@dataclass
class DryRunWallet:
    """Paper balances; token holdings are notional units, one per lamport spent"""
    sol_lamports: int
    token_balances: Dict[str, int] = field(default_factory=dict)

    async def get_sol_balance(self) -> Optional[int]:
        return self.sol_lamports

    async def get_token_balance(self, mint: str) -> Optional[int]:
        return self.token_balances.get(mint, 0)


@dataclass
class DryRunExecutor:
    """Stands in for TradeExecutor; books conversions against a DryRunWallet"""
    logger: Logger
    wallet: DryRunWallet
    transactions: List[SimulatedTransaction] = field(default_factory=list)

    async def execute(self, from_mint: str, to_mint: str, raw_amount: int) -> ExecutionResult:
        if raw_amount is None or raw_amount <= 0:
            return ExecutionResult.failed(FailureReason.INVALID_AMOUNT, f"amount={raw_amount}")

        tx = SimulatedTransaction(
            timestamp=datetime.now(),
            from_mint=from_mint,
            to_mint=to_mint,
            amount=raw_amount,
            bundle_id=f"dry-run-{uuid.uuid4().hex[:16]}"
        )

        if from_mint == SOL_MINT:
            if raw_amount + tx.network_fee > self.wallet.sol_lamports:
                return ExecutionResult.failed(FailureReason.INVALID_AMOUNT, "insufficient simulated balance")
            self.wallet.sol_lamports -= raw_amount + tx.network_fee
            self.wallet.token_balances[to_mint] = self.wallet.token_balances.get(to_mint, 0) + raw_amount
        else:
            held = self.wallet.token_balances.get(from_mint, 0)
            sold = min(raw_amount, held)
            remaining = held - sold
            if remaining:
                self.wallet.token_balances[from_mint] = remaining
            else:
                self.wallet.token_balances.pop(from_mint, None)
            self.wallet.sol_lamports += max(sold - tx.network_fee, 0)

        self.transactions.append(tx)
        self.logger.info(f"[DRY RUN] {from_mint[:8]}... -> {to_mint[:8]}... "
                         f"amount={raw_amount} bundle={tx.bundle_id}")
        return ExecutionResult.ok(tx.bundle_id)

    async def close(self):
        pass
