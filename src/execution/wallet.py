from typing import Optional
from logging import Logger
import json
import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address
from utils.connection_manager import ConnectionManager


class WalletError(Exception):
    """Raised when the signing key is missing or unusable"""
    pass


def load_keypair(secret: Optional[str]) -> Keypair:
    """Parse a base58 secret or a JSON byte array (solana-keygen format)"""
    if not secret or not secret.strip():
        raise WalletError("No private key configured")

    content = secret.strip()
    try:
        if content.startswith('['):
            raw = bytes(json.loads(content))
        else:
            raw = base58.b58decode(content)
        return Keypair.from_bytes(raw)
    except (ValueError, TypeError) as e:
        # Error text could echo key material
        raise WalletError(f"Private key could not be decoded ({type(e).__name__})") from None


class Wallet:
    def __init__(self, keypair: Keypair, connection: ConnectionManager, logger: Logger):
        self.keypair = keypair
        self.connection = connection
        self.logger = logger

    @classmethod
    def from_secret(cls, secret: Optional[str], connection: ConnectionManager, logger: Logger) -> 'Wallet':
        wallet = cls(load_keypair(secret), connection, logger)
        logger.info(f"Wallet loaded: {wallet.pubkey}")
        return wallet

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    async def get_sol_balance(self) -> Optional[int]:
        """Lamports held by the wallet, None if the RPC call failed"""
        try:
            response = await self.connection.client.get_balance(self.pubkey)
            return int(response.value)
        except Exception as e:
            self.logger.error(f"Error fetching SOL balance: {e}")
            self.connection.rotate()
            return None

    async def get_token_balance(self, mint: str) -> Optional[int]:
        """Raw token units in the wallet's associated account

        Returns 0 when the account does not exist and None when the
        balance could not be determined.
        """
        ata = get_associated_token_address(self.pubkey, Pubkey.from_string(mint))
        try:
            response = await self.connection.client.get_token_account_balance(ata)
            return int(response.value.amount)
        except Exception as e:
            if "could not find account" in str(e).lower():
                return 0
            self.logger.error(f"Error fetching token balance for {mint}: {e}")
            self.connection.rotate()
            return None
