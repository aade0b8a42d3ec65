"""CopyEngine: turns a detected trader trade into one ledger outcome per follower.

For each follower the ledger row is reserved first (a conditional insert on
(owner, id)); only the delivery that wins the reservation goes on to match,
size, execute and notify. The reserved row always ends in a terminal status.
"""
import asyncio
import logging
from typing import List, Optional

from copytrader.errors import PersistenceError
from copytrader.ledger import entry_id
from copytrader.notifications import notify_copy_executed, notify_trade_detected
from copytrader.schemas import (
    CopySetting, EntryStatus, LedgerEntry, NotificationInput, NotificationKind,
    NotificationType, TradeEvent
)
from copytrader.strategy import build_mirror_order, calculate_order_size

logger = logging.getLogger(__name__)

NO_MATCH_ERROR = "No matching market"
SIZE_TOO_SMALL = "Position size too small"
CANCELLED_ERROR = "Cancelled before completion"


class CopyEngine:
    def __init__(self, settings_store, matcher, ledger, notifier, executor):
        self.settings_store = settings_store
        self.matcher = matcher
        self.ledger = ledger
        self.notifier = notifier
        self.executor = executor

    async def process(self, event: TradeEvent) -> List[LedgerEntry]:
        """Process event for every follower of its wallet.

        Returns the entries this call brought to a terminal status; entries
        already handled by an earlier delivery are not returned.
        """
        followers = self.settings_store.for_trader(event.wallet_address, active=None)
        if not followers:
            logger.debug(f"No followers for {event.wallet_address}, ignoring {event.signature}")
            return []

        price = f" @ {event.price:.4f}" if event.price else ""
        logger.info(
            f"Detected {event.action.value} {event.side.value} by {event.wallet_address} "
            f"on {event.platform}: ${event.amount:.2f}{price} ({len(followers)} followers)"
        )
        results = []
        for setting in followers:
            if not setting.is_active:
                await self._alert_paused(event, setting)
                continue
            entry = await self._process_for(event, setting)
            if entry is not None:
                results.append(entry)
        return results

    async def _process_for(self, event: TradeEvent, setting: CopySetting) -> Optional[LedgerEntry]:
        entry, reserved = self.ledger.reserve(
            setting.owner, event, setting.trader_id, is_simulation=self.executor.dry_run
        )
        if not reserved:
            logger.info(
                f"Trade {event.signature} already {entry.status.value} for {setting.owner}, skipping"
            )
            return None

        try:
            entry = await self._copy(event, setting, entry)
        except asyncio.CancelledError:
            self._abandon(setting.owner, entry.id)
            raise
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Copy of {event.signature} for {setting.owner} failed: {e}")
            entry = self.ledger.finalize(
                setting.owner, entry.id, EntryStatus.FAILED, error=str(e) or e.__class__.__name__
            )
        await self._notify(entry, event)
        return entry

    async def _copy(self, event: TradeEvent, setting: CopySetting, entry: LedgerEntry) -> LedgerEntry:
        owner = setting.owner
        ticker = await self.matcher.match(event.raw_description)
        if ticker is None:
            return self.ledger.finalize(owner, entry.id, EntryStatus.FAILED, error=NO_MATCH_ERROR)

        bankroll = await self.executor.bankroll()
        size = calculate_order_size(setting, bankroll)
        if size <= 0:
            logger.info(f"Calculated size for {owner} on {ticker} is zero, skipping")
            return self.ledger.finalize(
                owner, entry.id, EntryStatus.SKIPPED, kalshi_ticker=ticker, size_usd=0.0, error=SIZE_TOO_SMALL
            )

        market = await self.matcher.catalog.lookup(ticker)
        order = build_mirror_order(ticker, event.side, event.action.value, size, market)
        try:
            result = await self.executor.execute(order, client_order_id=entry.id[:32])
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Order for {owner} on {ticker} failed: {e}")
            return self.ledger.finalize(
                owner, entry.id, EntryStatus.FAILED, kalshi_ticker=ticker, size_usd=size, error=str(e)
            )
        logger.info(f"Copy trade {'simulated' if result.simulated else 'executed'}: {owner} {ticker} ${size:.2f}")
        return self.ledger.finalize(
            owner, entry.id, EntryStatus.EXECUTED, kalshi_ticker=ticker, size_usd=size, order_id=result.order_id
        )

    def _abandon(self, owner: str, key: str):
        try:
            self.ledger.finalize(owner, key, EntryStatus.FAILED, error=CANCELLED_ERROR)
        except PersistenceError as e:
            logger.error(f"Could not fail cancelled ledger entry {key}, left for the pending sweep: {e}")

    async def _notify(self, entry: LedgerEntry, event: TradeEvent):
        if entry.status == EntryStatus.SKIPPED:
            return
        try:
            if entry.status == EntryStatus.EXECUTED:
                await notify_copy_executed(
                    self.notifier, entry.owner, entry.trader_id,
                    market_title=entry.kalshi_ticker or event.raw_description,
                    amount=entry.size_usd or 0.0,
                    ledger_entry_id=entry.id,
                    tx_signature=event.signature,
                    simulated=entry.is_simulation,
                )
            elif entry.error == NO_MATCH_ERROR:
                await self.notifier.emit(entry.owner, NotificationInput(
                    type=NotificationType.WARNING,
                    title=NO_MATCH_ERROR,
                    message=f'Could not find a Kalshi market for "{event.raw_description}"',
                    wallet_address=entry.trader_id,
                    tx_signature=event.signature,
                    ledger_entry_id=entry.id,
                ))
            elif entry.status == EntryStatus.FAILED:
                await self.notifier.emit(entry.owner, NotificationInput(
                    type=NotificationType.ERROR,
                    kind=NotificationKind.GENERIC,
                    title="Copy trade failed",
                    message=entry.error or "Unknown error",
                    wallet_address=entry.trader_id,
                    tx_signature=event.signature,
                    ledger_entry_id=entry.id,
                ))
        except PersistenceError as e:
            # The ledger outcome stands; only the notice is lost
            logger.error(f"Notification for ledger entry {entry.id} failed: {e}")

    async def _alert_paused(self, event: TradeEvent, setting: CopySetting):
        """Paused followers still hear about trades, nothing is copied."""
        try:
            await notify_trade_detected(
                self.notifier, setting.owner, setting.trader_id,
                market_title=event.raw_description or "Unknown market",
                side=event.side.value,
                tx_signature=event.signature,
                dedup_key=f"detected:{entry_id(event.signature, setting.trader_id)}",
            )
        except PersistenceError as e:
            logger.error(f"Trade alert for {setting.owner} failed: {e}")
