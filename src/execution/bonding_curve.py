from dataclasses import dataclass
from typing import Optional
from logging import Logger
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address
from construct import ConstructError
from core.types import BondingCurveAccount
from utils.connection_manager import ConnectionManager
from .constants import PUMP_PROGRAM

BONDING_CURVE_SEED = b"bonding-curve"


def expected_buy_output(token_reserve: int, currency_reserve: int, amount_in: int) -> int:
    """Tokens received for amount_in lamports on a constant-product curve (integer math)"""
    if amount_in <= 0:
        return 0
    return token_reserve * amount_in // (currency_reserve + amount_in)


def expected_sell_output(token_reserve: int, currency_reserve: int, tokens_in: int) -> int:
    """Lamports received for tokens_in on a constant-product curve (integer math)"""
    if tokens_in <= 0:
        return 0
    return currency_reserve * tokens_in // (token_reserve + tokens_in)


def apply_percentage(amount: int, percentage: int) -> int:
    """amount * percentage / 100, rounded down"""
    return amount * percentage // 100


@dataclass
class CurveQuote:
    expected_out: int
    min_out: int
    max_cost: int


class BondingCurveReader:
    def __init__(self, connection: ConnectionManager, logger: Logger):
        self.connection = connection
        self.logger = logger

    def get_bonding_curve_pda(self, mint: Pubkey, program_id: Pubkey = PUMP_PROGRAM) -> Pubkey:
        """Derive the bonding curve PDA for a given mint"""
        pda, _ = Pubkey.find_program_address([BONDING_CURVE_SEED, bytes(mint)], program_id)
        return pda

    def get_associated_bonding_curve(self, mint: Pubkey, bonding_curve_pda: Pubkey) -> Pubkey:
        """Get associated token account for bonding curve"""
        return get_associated_token_address(bonding_curve_pda, mint)

    async def fetch_bonding_curve(self, mint: Pubkey) -> Optional[BondingCurveAccount]:
        """Single read of the curve account; None if missing, unparseable, complete or unreachable"""
        bonding_curve_pda = self.get_bonding_curve_pda(mint)
        try:
            account_info = await self.connection.client.get_account_info(bonding_curve_pda)
        except Exception as e:
            if "429" in str(e):
                self.logger.warning(f"Rate limit hit when fetching bonding curve for {mint}")
            else:
                self.logger.error(f"Error fetching bonding curve for mint {mint}: {e}")
            self.connection.rotate()
            return None

        if not account_info.value or not account_info.value.data:
            self.logger.info(f"No bonding curve account for mint {mint}")
            return None

        try:
            account = BondingCurveAccount.from_buffer(account_info.value.data)
        except ConstructError as e:
            self.logger.error(f"Error parsing bonding curve data for mint {mint}: {e}")
            return None

        if account.complete:
            self.logger.info(f"Bonding curve is complete for mint {mint}")
            return None

        self.logger.debug(f"Bonding curve for {mint}: "
                          f"virtual_token={account.virtual_token_reserves}, "
                          f"virtual_sol={account.virtual_sol_reserves}")
        return account

    @staticmethod
    def quote_buy(curve: BondingCurveAccount, amount_lamports: int,
                  min_output_pct: int = 50, max_cost_pct: int = 120) -> CurveQuote:
        expected = expected_buy_output(curve.virtual_token_reserves, curve.virtual_sol_reserves, amount_lamports)
        return CurveQuote(
            expected_out=expected,
            min_out=apply_percentage(expected, min_output_pct),
            max_cost=apply_percentage(amount_lamports, max_cost_pct),
        )

    @staticmethod
    def quote_sell(curve: BondingCurveAccount, token_amount: int, min_output_pct: int = 50) -> CurveQuote:
        expected = expected_sell_output(curve.virtual_token_reserves, curve.virtual_sol_reserves, token_amount)
        return CurveQuote(
            expected_out=expected,
            min_out=apply_percentage(expected, min_output_pct),
            max_cost=token_amount,
        )
