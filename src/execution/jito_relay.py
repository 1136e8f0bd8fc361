from itertools import cycle
from typing import List, Optional
from logging import Logger
import asyncio
import aiohttp
import base58


class RelayRateLimitedError(Exception):
    """Raised when the block engine answers HTTP 429"""
    pass


class JitoRelay:
    """sendBundle client rotating round-robin across block-engine endpoints"""

    def __init__(self, endpoints: List[str], logger: Logger, timeout: float = 10.0):
        if not endpoints:
            raise ValueError("JitoRelay needs at least one endpoint")
        self.endpoints = list(endpoints)
        self._endpoint_cycle = cycle(self.endpoints)
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    def next_endpoint(self) -> str:
        return next(self._endpoint_cycle)

    async def submit_bundle(self, signed_transactions: List[bytes]) -> Optional[str]:
        """Returns the bundle id, None on rejection; raises RelayRateLimitedError on 429"""
        endpoint = self.next_endpoint()
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [[base58.b58encode(tx).decode() for tx in signed_transactions]],
        }

        try:
            async with self._get_session().post(
                endpoint,
                json=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status == 429:
                    raise RelayRateLimitedError(f"rate limited by {endpoint}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Relay network error on {endpoint}: {type(e).__name__} {e}")
            return None

        if isinstance(data, dict) and data.get("result"):
            return str(data["result"])

        error = data.get("error") if isinstance(data, dict) else data
        self.logger.error(f"Relay rejected bundle on {endpoint}: {error}")
        return None

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
