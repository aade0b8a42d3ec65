# copytrader/executor.py
import logging
from dataclasses import dataclass
from typing import Optional

from copytrader.errors import ValidationError
from copytrader.strategy import MirrorOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    order_id: str
    simulated: bool
    status: Optional[str] = None


class TradeExecutor:
    """Places mirror orders on the exchange, or simulates them in dry-run mode."""

    def __init__(self, client, dry_run: bool = True, default_bankroll: float = 0.0):
        self.client = client
        self.dry_run = dry_run
        self.default_bankroll = default_bankroll

    async def bankroll(self) -> float:
        if self.dry_run:
            return self.default_bankroll
        return await self.client.get_balance()

    async def execute(self, order: MirrorOrder, client_order_id: str) -> ExecutionResult:
        if order.count < 1:
            raise ValidationError(
                f"Order size ${order.size_usd:.2f} buys no contracts of {order.ticker}"
            )
        if self.dry_run:
            logger.info(f"[DRY RUN] Would {order.action} {order.count} {order.side} on {order.ticker}")
            return ExecutionResult(order_id=f"sim-{client_order_id[:16]}", simulated=True, status="simulated")

        logger.info(f"[LIVE] EXECUTING COPY TRADE: {order.action} {order.count} {order.side} on {order.ticker}")
        placed = await self.client.create_order(
            ticker=order.ticker,
            action=order.action,
            side=order.side,
            count=order.count,
            client_order_id=client_order_id,
        )
        return ExecutionResult(
            order_id=str(placed.get("order_id") or placed.get("id") or client_order_id),
            simulated=False,
            status=placed.get("status"),
        )
