from typing import Tuple
import struct
from solders.pubkey import Pubkey
from solders.instruction import Instruction, AccountMeta
from solders.system_program import transfer, TransferParams
from spl.token.instructions import get_associated_token_address, create_idempotent_associated_token_account
from .constants import (
    PUMP_PROGRAM, PUMP_GLOBAL, PUMP_FEE, PUMP_EVENT_AUTHORITY, SYSTEM_PROGRAM,
    SYSTEM_TOKEN_PROGRAM, SYSTEM_RENT, ASSOCIATED_TOKEN_PROGRAM_ID, COMPUTE_BUDGET_ID
)

BUY_DISCRIMINATOR = struct.pack("<Q", 16927863322537952870)
SELL_DISCRIMINATOR = bytes.fromhex("33e685a4017f83ad")


class Instructions:
    def __init__(self, owner: Pubkey):
        self.owner = owner

    def get_ata(self, mint: Pubkey) -> Pubkey:
        return get_associated_token_address(self.owner, mint)

    def create_ata_instruction(self, mint: Pubkey) -> Instruction:
        """Create the owner's associated token account; a no-op on chain if it already exists"""
        return create_idempotent_associated_token_account(
            payer=self.owner,
            owner=self.owner,
            mint=mint
        )

    def create_compute_budget_instructions(
        self,
        priority_fee: int = 350_000,
        compute_unit_limit: int = 150_000
    ) -> Tuple[Instruction, Instruction]:
        """Create compute budget instructions for transaction priority

        Args:
            priority_fee: Priority fee in microlamports per compute unit
            compute_unit_limit: Compute unit limit

        Returns:
            Tuple of (compute_limit_ix, compute_price_ix)
        """

        # 1. Set Compute Unit Limit (instruction ID: 2)
        compute_limit_ix = Instruction(
            program_id=COMPUTE_BUDGET_ID,
            data=bytes([2]) + compute_unit_limit.to_bytes(4, "little"),
            accounts=[]
        )

        # 2. Set Compute Unit Price (instruction ID: 3)
        compute_price_ix = Instruction(
            program_id=COMPUTE_BUDGET_ID,
            data=bytes([3]) + priority_fee.to_bytes(8, "little"),
            accounts=[]
        )

        return compute_limit_ix, compute_price_ix

    def create_tip_instruction(self, tip_account: Pubkey, lamports: int) -> Instruction:
        """System transfer paying the relay tip"""
        return transfer(TransferParams(from_pubkey=self.owner, to_pubkey=tip_account, lamports=lamports))

    def create_buy_instruction(
        self,
        mint: Pubkey,
        bonding_curve: Pubkey,
        associated_bonding_curve: Pubkey,
        user_ata: Pubkey,
        token_amount: int,
        max_sol_amount: int
    ) -> Instruction:
        """Create the buy instruction with token amount and max SOL"""
        accounts = [
            AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_FEE, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=associated_bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=user_ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.owner, is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_TOKEN_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_RENT, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_PROGRAM, is_signer=False, is_writable=False),
        ]

        data = BUY_DISCRIMINATOR + struct.pack("<Q", token_amount) + struct.pack("<Q", max_sol_amount)
        return Instruction(PUMP_PROGRAM, data, accounts)

    def create_sell_instruction(
        self,
        mint: Pubkey,
        bonding_curve: Pubkey,
        associated_bonding_curve: Pubkey,
        user_ata: Pubkey,
        token_amount: int,
        min_sol_output: int
    ) -> Instruction:
        """Create the sell instruction according to the Pump IDL"""
        accounts = [
            AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_FEE, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=associated_bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(pubkey=user_ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.owner, is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_TOKEN_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(pubkey=PUMP_PROGRAM, is_signer=False, is_writable=False),
        ]

        data = SELL_DISCRIMINATOR + struct.pack("<Q", token_amount) + struct.pack("<Q", min_sol_output)
        return Instruction(PUMP_PROGRAM, data, accounts)
