import logging
import math
from dataclasses import dataclass
from typing import Optional

from copytrader.schemas import CopySetting, Market, Side

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MirrorOrder:
    ticker: str
    side: str
    action: str
    size_usd: float
    count: int
    max_price_cents: Optional[int]


def calculate_order_size(setting: CopySetting, bankroll: float) -> float:
    """Follower order size in USD: allocation capped by max% of bankroll."""
    cap = max(bankroll, 0.0) * setting.max_position_percent / 100.0
    size = min(setting.allocation_usd, cap)
    return round(max(size, 0.0), 2)


def contracts_for(size_usd: float, price_cents: Optional[int]) -> int:
    """Whole contracts affordable at price_cents; without a quote assume the $1 worst case."""
    price = price_cents if price_cents and price_cents > 0 else 100
    return int(math.floor(size_usd * 100 / price))


def build_mirror_order(ticker: str, side: Side, action: str, size_usd: float,
                       market: Optional[Market] = None) -> MirrorOrder:
    ask = None
    if market is not None:
        ask = market.yes_ask if side == Side.YES else market.no_ask
    order = MirrorOrder(
        ticker=ticker,
        side=side.value,
        action=action,
        size_usd=size_usd,
        count=contracts_for(size_usd, ask),
        max_price_cents=ask,
    )
    logger.info(f"Generated mirror order: {order.action} {order.count} {order.side} {order.ticker} (${size_usd:.2f})")
    return order
