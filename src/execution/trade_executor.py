from typing import List, Optional
from logging import Logger
import random
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from core.types import ExecutionResult, FailureReason
from utils.config import ExecutionParameters
from .bonding_curve import BondingCurveReader
from .constants import SOL_MINT, JITO_TIP_ACCOUNTS
from .instructions import Instructions
from .jito_relay import JitoRelay, RelayRateLimitedError
from .jupiter_client import JupiterClient
from .wallet import Wallet


class TransactionError(Exception):
    """Raised when a transaction cannot be built or signed"""
    pass


class TradeExecutor:
    """Builds a [swap, tip] bundle for a conversion and hands it to the relay.

    Two ways to build the swap leg:
      routed         aggregator quote + prebuilt transaction, signed locally
      bonding_curve  buy/sell instruction against the launch curve, falling
                     back to routed when the curve is gone or complete
    """

    def __init__(self, wallet: Wallet, jupiter: JupiterClient, relay: JitoRelay,
                 curve_reader: BondingCurveReader, params: ExecutionParameters,
                 logger: Logger, slippage_bps: int = 2000):
        self.wallet = wallet
        self.jupiter = jupiter
        self.relay = relay
        self.curve_reader = curve_reader
        self.params = params
        self.logger = logger
        self.slippage_bps = slippage_bps
        self.instructions = Instructions(wallet.pubkey)
        self.compute_limit_ix, self.compute_price_ix = self.instructions.create_compute_budget_instructions(
            priority_fee=params.priority_fee_microlamports,
            compute_unit_limit=params.compute_unit_limit
        )

    async def execute(self, from_mint: str, to_mint: str, raw_amount: int) -> ExecutionResult:
        if raw_amount is None or raw_amount <= 0:
            return ExecutionResult.failed(FailureReason.INVALID_AMOUNT, f"amount={raw_amount}")

        self.logger.info(f"Executing {from_mint[:8]}... -> {to_mint[:8]}... amount={raw_amount}")

        if self.params.strategy == 'bonding_curve' and SOL_MINT in (from_mint, to_mint):
            result = await self._execute_direct(from_mint, to_mint, raw_amount)
            if result is not None:
                return result
            self.logger.info("Bonding curve unavailable, using routed swap")

        return await self._execute_routed(from_mint, to_mint, raw_amount)

    async def _execute_routed(self, from_mint: str, to_mint: str, raw_amount: int) -> ExecutionResult:
        quote = await self.jupiter.get_quote(from_mint, to_mint, raw_amount, self.slippage_bps)
        if quote is None:
            return ExecutionResult.failed(FailureReason.NO_QUOTE, f"{from_mint} -> {to_mint}")

        swap_bytes = await self.jupiter.build_swap_transaction(quote, str(self.wallet.pubkey))
        if swap_bytes is None:
            return ExecutionResult.failed(FailureReason.NO_ROUTE, "swap transaction not built")

        try:
            unsigned = VersionedTransaction.from_bytes(swap_bytes)
            swap_tx = VersionedTransaction(unsigned.message, [self.wallet.keypair])
        except Exception as e:
            self.logger.error(f"Error signing swap transaction: {e}")
            return ExecutionResult.failed(FailureReason.SIGNING_ERROR, str(e))

        return await self._submit(swap_tx)

    async def _execute_direct(self, from_mint: str, to_mint: str, raw_amount: int) -> Optional[ExecutionResult]:
        """Curve trade; None when the caller should fall back to routed"""
        is_buy = from_mint == SOL_MINT
        mint = Pubkey.from_string(to_mint if is_buy else from_mint)

        curve = await self.curve_reader.fetch_bonding_curve(mint)
        if curve is None:
            return None

        bonding_curve = self.curve_reader.get_bonding_curve_pda(mint)
        associated_bonding_curve = self.curve_reader.get_associated_bonding_curve(mint, bonding_curve)
        ixs: List[Instruction] = [self.compute_limit_ix, self.compute_price_ix]

        if is_buy:
            quote = self.curve_reader.quote_buy(
                curve, raw_amount,
                min_output_pct=self.params.curve_min_output_pct,
                max_cost_pct=self.params.curve_max_cost_pct
            )
            if quote.min_out <= 0:
                return ExecutionResult.failed(FailureReason.CURVE_UNAVAILABLE, "curve quote is zero")
            user_ata = self.instructions.get_ata(mint)
            ixs.append(self.instructions.create_ata_instruction(mint))
            ixs.append(self.instructions.create_buy_instruction(
                mint=mint,
                bonding_curve=bonding_curve,
                associated_bonding_curve=associated_bonding_curve,
                user_ata=user_ata,
                token_amount=quote.min_out,
                max_sol_amount=quote.max_cost
            ))
        else:
            quote = self.curve_reader.quote_sell(curve, raw_amount, min_output_pct=self.params.curve_min_output_pct)
            user_ata = self.instructions.get_ata(mint)
            ixs.append(self.instructions.create_sell_instruction(
                mint=mint,
                bonding_curve=bonding_curve,
                associated_bonding_curve=associated_bonding_curve,
                user_ata=user_ata,
                token_amount=raw_amount,
                min_sol_output=quote.min_out
            ))

        self.logger.info(f"Curve {'buy' if is_buy else 'sell'} {mint}: "
                         f"expected={quote.expected_out} min={quote.min_out}")

        blockhash = await self._latest_blockhash()
        if blockhash is None:
            return ExecutionResult.failed(FailureReason.NETWORK_ERROR, "no recent blockhash")

        try:
            swap_tx = self._sign(ixs, blockhash)
        except TransactionError as e:
            return ExecutionResult.failed(FailureReason.SIGNING_ERROR, str(e))

        return await self._submit(swap_tx, blockhash)

    async def _latest_blockhash(self) -> Optional[Hash]:
        try:
            response = await self.wallet.connection.client.get_latest_blockhash()
            return response.value.blockhash
        except Exception as e:
            self.logger.error(f"Error fetching latest blockhash: {e}")
            self.wallet.connection.rotate()
            return None

    def _sign(self, ixs: List[Instruction], blockhash: Hash) -> VersionedTransaction:
        try:
            message = MessageV0.try_compile(self.wallet.pubkey, ixs, [], blockhash)
            return VersionedTransaction(message, [self.wallet.keypair])
        except Exception as e:
            self.logger.error(f"Error signing transaction: {e}")
            raise TransactionError(str(e)) from e

    def build_tip_transaction(self, blockhash: Hash) -> VersionedTransaction:
        tip_account = random.choice(JITO_TIP_ACCOUNTS)
        tip_ix = self.instructions.create_tip_instruction(tip_account, self.params.tip_lamports)
        return self._sign([tip_ix], blockhash)

    async def _submit(self, swap_tx: VersionedTransaction, blockhash: Optional[Hash] = None) -> ExecutionResult:
        if blockhash is None:
            blockhash = await self._latest_blockhash()
            if blockhash is None:
                return ExecutionResult.failed(FailureReason.NETWORK_ERROR, "no recent blockhash")

        try:
            tip_tx = self.build_tip_transaction(blockhash)
        except TransactionError as e:
            return ExecutionResult.failed(FailureReason.SIGNING_ERROR, str(e))

        try:
            bundle_id = await self.relay.submit_bundle([bytes(swap_tx), bytes(tip_tx)])
        except RelayRateLimitedError as e:
            self.logger.warning(f"Bundle not sent: {e}")
            return ExecutionResult.failed(FailureReason.RATE_LIMITED, str(e))

        if bundle_id is None:
            return ExecutionResult.failed(FailureReason.RELAY_REJECTED, "relay returned no bundle id")

        self.logger.info(f"Bundle submitted: {bundle_id}")
        return ExecutionResult.ok(bundle_id)

    async def close(self):
        await self.jupiter.close()
        await self.relay.close()
