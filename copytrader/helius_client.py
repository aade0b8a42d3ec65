# copytrader/helius_client.py
from typing import Dict, List, Optional

import httpx

from copytrader.config import settings as default_settings
from copytrader.errors import UpstreamError, UpstreamTimeoutError


class HeliusClient:
    """Enhanced-transaction feed for a wallet, same shape as webhook deliveries."""

    def __init__(self, config=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        config = config or default_settings
        self.api_key = config.HELIUS_API_KEY
        self.client = httpx.AsyncClient(
            base_url=config.HELIUS_BASE_URL, timeout=config.HTTP_TIMEOUT, transport=transport
        )

    async def aclose(self):
        await self.client.aclose()

    async def get_recent_transactions(self, wallet: str, limit: int = 1) -> List[Dict]:
        params = {"limit": limit}
        if self.api_key:
            params["api-key"] = self.api_key
        try:
            resp = await self.client.get(f"/v0/addresses/{wallet}/transactions", params=params)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Helius activity for {wallet} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Helius activity for {wallet} failed: {e}") from e
        data = resp.json()
        if not isinstance(data, list):
            raise UpstreamError(f"Helius activity for {wallet}: expected a list, got {type(data).__name__}")
        return data
