"""Cached snapshot of open exchange markets.

The snapshot is replaced wholesale on refresh. Expiry is handled with a
single-flight refresh: the caller that notices the snapshot is stale starts
one fetch and awaits it; concurrent callers get the stale snapshot, or join
the in-flight fetch when nothing has been loaded yet.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from copytrader.errors import CatalogUnavailable
from copytrader.schemas import Market, MarketStatus

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


class MarketCatalog:
    def __init__(self, client, ttl: float = DEFAULT_TTL, fetch_limit: int = 1000,
                 max_pages: int = 1, clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.ttl = ttl
        self.fetch_limit = fetch_limit
        self.max_pages = max_pages
        self.clock = clock
        self._markets: Optional[List[Market]] = None
        self._by_ticker: Dict[str, Market] = {}
        self._loaded_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self.last_error: Optional[Exception] = None
        self.fetch_count = 0

    @property
    def loaded(self) -> bool:
        return self._markets is not None

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self.clock() - self._loaded_at >= self.ttl

    def __len__(self):
        return len(self._markets or [])

    async def _fetch(self) -> List[Market]:
        self.fetch_count += 1
        markets = await self.client.get_markets(
            status="open", limit=self.fetch_limit, max_pages=self.max_pages
        )
        snapshot = [m for m in markets if m.status == MarketStatus.OPEN]
        self._markets = snapshot
        self._by_ticker = {m.ticker: m for m in snapshot}
        self._loaded_at = self.clock()
        self.last_error = None
        logger.info(f"Market catalog refreshed: {len(snapshot)} open markets")
        return snapshot

    def _start_refresh(self) -> asyncio.Task:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        return self._inflight

    async def refresh(self) -> List[Market]:
        """Fetch now. Joins a refresh already in flight. Raises on failure."""
        try:
            return await self._start_refresh()
        except Exception as e:
            self.last_error = e
            raise

    async def markets(self) -> List[Market]:
        if not self.is_stale():
            return self._markets
        if self._markets is not None and self._inflight is not None and not self._inflight.done():
            return self._markets
        try:
            return await self._start_refresh()
        except Exception as e:
            self.last_error = e
            if self._markets is None:
                raise CatalogUnavailable(f"Market catalog unavailable: {e}") from e
            logger.warning(f"Market catalog refresh failed, serving stale snapshot: {e}")
            # Hold off the next attempt for a full TTL rather than retrying per call
            self._loaded_at = self.clock()
            return self._markets

    async def lookup(self, ticker: str) -> Optional[Market]:
        await self.markets()
        return self._by_ticker.get(ticker)

    def invalidate(self):
        self._loaded_at = None
