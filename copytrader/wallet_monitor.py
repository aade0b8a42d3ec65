# copytrader/wallet_monitor.py
import logging
from typing import Dict, List, Optional

from copytrader.errors import ValidationError
from copytrader.ingest import is_prediction_market_trade, to_trade_event, validate_transaction
from copytrader.schemas import TradeEvent
from copytrader.scheduler import RecurringTask

logger = logging.getLogger(__name__)


class TransactionWatcher:
    """Poll fallback for webhook delivery.

    Only the latest signature per wallet is compared with the last one seen,
    so more than one trade between two polls surfaces as a single event.
    """

    def __init__(self, settings_store, feed, engine, interval: float = 10.0, sleep=None):
        self.settings_store = settings_store
        self.feed = feed
        self.engine = engine
        self.last_seen: Dict[str, str] = {}
        kwargs = {"sleep": sleep} if sleep is not None else {}
        self.task = RecurringTask("TransactionWatcher", self.poll_once, interval, **kwargs)

    def start(self):
        self.task.start()

    async def stop(self):
        await self.task.stop()

    async def poll_once(self) -> List[TradeEvent]:
        wallets = self.settings_store.active_wallets()
        emitted = []
        for wallet, copy_open in wallets.items():
            try:
                event = await self._check_wallet(wallet, copy_open)
            except Exception as e:
                logger.error(f"Error monitoring {wallet}: {e}")
                continue
            if event is None:
                continue
            emitted.append(event)
            try:
                await self.engine.process(event)
            except Exception as e:
                logger.error(f"Copy processing failed for {event.signature}: {e}")
        return emitted

    async def _check_wallet(self, wallet: str, copy_open_positions: bool) -> Optional[TradeEvent]:
        transactions = await self.feed.get_recent_transactions(wallet, limit=1)
        if not transactions:
            return None
        latest = transactions[0]
        signature = latest.get("signature") if isinstance(latest, dict) else None
        if not signature:
            raise ValidationError(f"Activity item for {wallet} has no signature")

        previous = self.last_seen.get(wallet)
        if previous == signature:
            return None
        # Attribute to the watched wallet even when someone else paid the fee
        tx = validate_transaction(dict(latest, feePayer=wallet))
        event = to_trade_event(tx) if is_prediction_market_trade(tx) else None
        self.last_seen[wallet] = signature

        if event is None:
            logger.debug(f"Latest transaction for {wallet} is not a trade: {signature}")
            return None

        if previous is None and not copy_open_positions:
            logger.info(f"Seeded {wallet} at {signature}")
            return None
        logger.info(f"New transaction detected for {wallet}: {signature}")
        return event
