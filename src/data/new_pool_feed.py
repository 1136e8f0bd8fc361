from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional, Set
from logging import Logger
import asyncio
import aiohttp
from core.types import TokenSignal, SignalParseError, SUPPORTED_DEXES


def _dex_id(pool: Any) -> Optional[str]:
    node = pool
    for key in ('relationships', 'dex', 'data', 'id'):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, str) else None


class NewPoolFeed:
    """Polls the GeckoTerminal new-pools listing and emits unseen, young pools"""

    def __init__(self, api_url: str, logger: Logger, max_pool_age_minutes: float = 60.0,
                 max_signals_per_poll: int = 1, timeout: float = 10.0, max_remembered_mints: int = 10_000):
        self.api_url = api_url
        self.logger = logger
        self.max_pool_age_minutes = max_pool_age_minutes
        self.max_signals_per_poll = max_signals_per_poll
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        # Oldest mints are forgotten first once the cap is reached
        self.processed_mints: Set[str] = set()
        self._processed_order: Deque[str] = deque()
        self.max_remembered_mints = max_remembered_mints

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    def _mark_processed(self, mint: str):
        self.processed_mints.add(mint)
        self._processed_order.append(mint)
        while len(self._processed_order) > self.max_remembered_mints:
            self.processed_mints.discard(self._processed_order.popleft())

    async def fetch_pools(self) -> List[dict]:
        try:
            async with self._get_session().get(self.api_url, headers={"Accept": "application/json"}) as response:
                if response.status != 200:
                    self.logger.warning(f"New pools HTTP {response.status}")
                    return []
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"New pools unavailable: {type(e).__name__} {e}")
            return []

        pools = payload.get('data') if isinstance(payload, dict) else None
        return pools if isinstance(pools, list) else []

    def extract_signals(self, pools: List[dict], now: Optional[datetime] = None) -> List[TokenSignal]:
        now = now or datetime.now(timezone.utc)
        signals: List[TokenSignal] = []

        for pool in pools:
            if len(signals) >= self.max_signals_per_poll:
                break
            if _dex_id(pool) not in SUPPORTED_DEXES:
                continue

            try:
                signal = TokenSignal.from_pool(pool, now=now)
            except SignalParseError as e:
                self.logger.debug(f"Skipping pool record: {e}")
                continue

            if signal.mint in self.processed_mints:
                continue
            if signal.pool_age_minutes > self.max_pool_age_minutes:
                continue

            self._mark_processed(signal.mint)
            self.logger.info(f"DETECTED: {signal.name} | MC: ${signal.market_cap:.0f} | "
                             f"Liq: ${signal.liquidity:.0f} | Tx(5m): {signal.tx_count_m5}")
            signals.append(signal)

        return signals

    async def poll(self) -> List[TokenSignal]:
        pools = await self.fetch_pools()
        if not pools:
            return []
        return self.extract_signals(pools)

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
