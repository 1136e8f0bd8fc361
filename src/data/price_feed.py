from typing import Dict, List, Optional
from logging import Logger
import asyncio
import math
import aiohttp


class PriceFeed:
    """Batched spot prices from the Jupiter price API"""

    def __init__(self, api_url: str, logger: Logger, timeout: float = 5.0):
        self.api_url = api_url
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def get_prices(self, mints: List[str]) -> Dict[str, float]:
        """Prices keyed by mint; mints without a usable price are left out"""
        if not mints:
            return {}

        try:
            async with self._get_session().get(self.api_url, params={"ids": ",".join(mints)}) as response:
                if response.status != 200:
                    self.logger.warning(f"Price API HTTP {response.status}")
                    return {}
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Price API unavailable: {type(e).__name__} {e}")
            return {}

        data = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return {}

        prices: Dict[str, float] = {}
        for mint in mints:
            entry = data.get(mint)
            if not isinstance(entry, dict):
                continue
            try:
                price = float(entry.get('price'))
            except (TypeError, ValueError):
                continue
            if math.isfinite(price) and price > 0:
                prices[mint] = price
        return prices

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
