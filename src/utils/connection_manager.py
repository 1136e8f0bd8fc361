from typing import Dict, List
from logging import Logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed


class ConnectionManager:
    """Round-robin over the configured RPC endpoints; rotate() after a failed call"""

    def __init__(self, endpoints: List[str], logger: Logger):
        self.endpoints = [url.strip() for url in endpoints if url.strip()]
        if not self.endpoints:
            raise ValueError("ConnectionManager needs at least one RPC endpoint")
        self.current_idx = 0
        self.logger = logger
        self._clients: Dict[str, AsyncClient] = {}
        self.logger.info(f"ConnectionManager: {len(self.endpoints)} RPC endpoints loaded")

    @property
    def endpoint(self) -> str:
        return self.endpoints[self.current_idx]

    @property
    def client(self) -> AsyncClient:
        """Client for the active endpoint, created on first use"""
        url = self.endpoint
        if url not in self._clients:
            self._clients[url] = AsyncClient(url, commitment=Confirmed)
        return self._clients[url]

    def rotate(self) -> AsyncClient:
        self.current_idx = (self.current_idx + 1) % len(self.endpoints)
        if len(self.endpoints) > 1:
            self.logger.warning(f"RPC rotation -> {self.endpoint[:25]}...")
        return self.client

    async def close(self):
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
