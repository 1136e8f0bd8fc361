from typing import Any, Dict, Optional
from logging import Logger
import asyncio
import base64
import binascii
import aiohttp

REQUIRED_QUOTE_FIELDS = ("inAmount", "outAmount", "routePlan")


class JupiterClient:
    """Quote and prebuilt swap transactions from the Jupiter aggregator"""

    def __init__(self, api_url: str, logger: Logger, timeout: float = 10.0):
        self.api_url = api_url.rstrip('/')
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int = 50) -> Optional[Dict[str, Any]]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": str(int(slippage_bps)),
        }
        try:
            async with self._get_session().get(f"{self.api_url}/quote", params=params) as response:
                if response.status != 200:
                    self.logger.error(f"Jupiter quote HTTP {response.status} for {input_mint} -> {output_mint}")
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Jupiter quote error: {type(e).__name__} {e}")
            return None

        if not isinstance(data, dict) or any(field not in data for field in REQUIRED_QUOTE_FIELDS):
            self.logger.error("Jupiter quote has an unexpected shape")
            return None
        if not data["routePlan"]:
            self.logger.warning(f"Jupiter found no route for {input_mint} -> {output_mint}")
            return None
        return data

    async def build_swap_transaction(self, quote: Dict[str, Any], user_public_key: str) -> Optional[bytes]:
        """Unsigned serialized VersionedTransaction for the quote"""
        body = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
        }
        try:
            async with self._get_session().post(f"{self.api_url}/swap", json=body) as response:
                if response.status != 200:
                    self.logger.error(f"Jupiter swap HTTP {response.status}")
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Jupiter swap error: {type(e).__name__} {e}")
            return None

        encoded = data.get("swapTransaction") if isinstance(data, dict) else None
        if not isinstance(encoded, str):
            self.logger.error("Jupiter swap response missing swapTransaction")
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            self.logger.error(f"Jupiter swap transaction is not base64: {e}")
            return None

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
