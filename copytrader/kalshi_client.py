# copytrader/kalshi_client.py
import base64
import logging
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from copytrader.config import settings as default_settings
from copytrader.errors import UpstreamError, UpstreamTimeoutError
from copytrader.schemas import Market, MarketStatus

logger = logging.getLogger(__name__)

API_PREFIX = "/trade-api/v2"

_OPEN_STATUSES = {"open", "active", "initialized"}
_SETTLED_STATUSES = {"settled", "finalized", "determined"}


def load_private_key(raw: str):
    """Accepts a PEM block, a PEM with literal "\\n" escapes, or base64 of either."""
    text = raw.strip()
    if "-----BEGIN" not in text:
        try:
            text = base64.b64decode(text).decode("utf-8")
        except ValueError:
            pass
    if "\\n" in text:
        text = text.replace("\\n", "\n")
    return serialization.load_pem_private_key(text.encode("utf-8"), password=None)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_market(data: Dict) -> Market:
    raw_status = str(data.get("status", "")).lower()
    if raw_status in _OPEN_STATUSES:
        status = MarketStatus.OPEN
    elif raw_status in _SETTLED_STATUSES:
        status = MarketStatus.SETTLED
    else:
        status = MarketStatus.CLOSED
    return Market(
        ticker=data["ticker"],
        title=data.get("title") or "",
        subtitle=data.get("subtitle") or data.get("yes_sub_title") or None,
        status=status,
        volume=float(data.get("volume") or 0),
        open_time=_parse_time(data.get("open_time") or data.get("created_time")),
        yes_ask=data.get("yes_ask"),
        no_ask=data.get("no_ask"),
    )


class KalshiClient:
    def __init__(self, config=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        config = config or default_settings
        self.base_url = config.kalshi_base_url
        self.api_key_id = config.KALSHI_API_KEY_ID
        self.private_key = load_private_key(config.KALSHI_PRIVATE_KEY) if config.KALSHI_PRIVATE_KEY else None
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=config.HTTP_TIMEOUT, transport=transport
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    def _sign(self, timestamp: str, method: str, path: str) -> str:
        message = f"{timestamp}{method}{path.split('?')[0]}".encode("utf-8")
        signature = self.private_key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
            hashes.SHA256(),
        )
        return base64.b64encode(signature).decode("ascii")

    def _headers(self, method: str, path: str) -> Dict[str, str]:
        if not (self.api_key_id and self.private_key):
            return {}
        timestamp = str(int(time.time() * 1000))
        return {
            "KALSHI-ACCESS-KEY": self.api_key_id,
            "KALSHI-ACCESS-TIMESTAMP": timestamp,
            "KALSHI-ACCESS-SIGNATURE": self._sign(timestamp, method, path),
        }

    async def _request(self, method: str, path: str, **kwargs) -> Dict:
        full_path = API_PREFIX + path
        try:
            resp = await self.client.request(
                method, full_path, headers=self._headers(method, full_path), **kwargs
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Kalshi {method} {path} timed out") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"Kalshi {method} {path} returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Kalshi {method} {path} failed: {e}") from e

    async def search_markets(self, status: str = "open", limit: int = 1000,
                             cursor: Optional[str] = None) -> Tuple[List[Dict], Optional[str]]:
        params = {"status": status, "limit": limit}
        if cursor:
            params["cursor"] = cursor
        data = await self._request("GET", "/markets", params=params)
        return data.get("markets") or [], data.get("cursor") or None

    async def get_markets(self, status: str = "open", limit: int = 1000, max_pages: int = 1) -> List[Market]:
        markets: List[Market] = []
        cursor = None
        for _ in range(max(max_pages, 1)):
            page, cursor = await self.search_markets(status=status, limit=limit, cursor=cursor)
            for item in page:
                try:
                    markets.append(parse_market(item))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed market payload: {e}")
            if not cursor:
                break
        return markets

    async def get_balance(self) -> float:
        """Available balance in USD."""
        data = await self._request("GET", "/portfolio/balance")
        return float(data.get("balance") or 0) / 100.0

    async def create_order(self, ticker: str, action: str, side: str, count: int,
                           client_order_id: Optional[str] = None) -> Dict:
        body = {
            "ticker": ticker,
            "action": action,
            "side": side,
            "count": count,
            "type": "market",
            "client_order_id": client_order_id or uuid.uuid4().hex,
        }
        data = await self._request("POST", "/portfolio/orders", json=body)
        return data.get("order") or data
