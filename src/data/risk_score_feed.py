from typing import Optional
from logging import Logger
import asyncio
import math
import aiohttp


class RiskScoreFeed:
    """RugCheck summary score; None means inconclusive, never safe"""

    def __init__(self, api_url: str, logger: Logger, timeout: float = 3.0):
        self.api_url = api_url.rstrip('/')
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def get_score(self, mint: str) -> Optional[float]:
        url = f"{self.api_url}/{mint}/report/summary"
        try:
            async with self._get_session().get(url, headers={"Accept": "application/json"}) as response:
                if response.status != 200:
                    self.logger.warning(f"Risk score HTTP {response.status} for {mint}")
                    return None
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Risk score unavailable for {mint}: {type(e).__name__} {e}")
            return None

        score = payload.get("score") if isinstance(payload, dict) else None
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            self.logger.warning(f"Malformed risk score payload for {mint}")
            return None
        return float(score)

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
