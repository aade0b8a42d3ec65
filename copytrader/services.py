# copytrader/services.py: wires the pipeline components together
import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from copytrader.catalog import MarketCatalog
from copytrader.config import Settings
from copytrader.copy_settings import CopySettingsStore
from copytrader.db import SessionLocal
from copytrader.engine import CopyEngine
from copytrader.executor import TradeExecutor
from copytrader.helius_client import HeliusClient
from copytrader.ingest import ActivityLog, TransactionIngestor
from copytrader.kalshi_client import KalshiClient
from copytrader.ledger import TradeLedger
from copytrader.matcher import MarketMatcher
from copytrader.notifications import NotificationEmitter
from copytrader.scheduler import RecurringTask
from copytrader.wallet_monitor import TransactionWatcher


@dataclass
class Services:
    config: Settings
    session_factory: Any
    exchange: Any
    feed: Any
    catalog: MarketCatalog
    matcher: MarketMatcher
    ledger: TradeLedger
    notifier: NotificationEmitter
    copy_settings: CopySettingsStore
    activity: ActivityLog
    engine: CopyEngine
    ingestor: TransactionIngestor
    watcher: TransactionWatcher
    sweeper: RecurringTask

    async def aclose(self):
        await self.watcher.stop()
        await self.sweeper.stop()
        for client in (self.exchange, self.feed):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def build_services(config: Settings, session_factory=None, exchange=None, feed=None,
                   watcher_sleep=None) -> Services:
    sleep = watcher_sleep or asyncio.sleep
    session_factory = session_factory or SessionLocal
    exchange = exchange or KalshiClient(config)
    feed = feed or HeliusClient(config)

    catalog = MarketCatalog(
        exchange,
        ttl=config.MARKET_CACHE_TTL,
        fetch_limit=config.MARKET_FETCH_LIMIT,
        max_pages=config.MARKET_FETCH_MAX_PAGES,
    )
    matcher = MarketMatcher(catalog, min_score=config.MATCH_MIN_SCORE)
    ledger = TradeLedger(session_factory)
    notifier = NotificationEmitter(
        session_factory, max_items=config.MAX_NOTIFICATIONS, ttl_days=config.NOTIFICATION_TTL_DAYS
    )
    copy_settings = CopySettingsStore(session_factory)
    executor = TradeExecutor(exchange, dry_run=config.DRY_RUN, default_bankroll=config.DEFAULT_BANKROLL)
    engine = CopyEngine(copy_settings, matcher, ledger, notifier, executor)
    activity = ActivityLog(
        session_factory,
        max_per_wallet=config.ACTIVITY_HISTORY_LIMIT,
        ttl_days=config.ACTIVITY_HISTORY_TTL_DAYS,
    )
    ingestor = TransactionIngestor(activity, engine)
    watcher = TransactionWatcher(
        copy_settings, feed, engine, interval=config.WATCHER_INTERVAL, sleep=sleep
    )

    async def sweep_pending():
        ledger.resolve_stale_pending(config.PENDING_TIMEOUT)

    sweeper = RecurringTask("Pending ledger sweep", sweep_pending, config.PENDING_SWEEP_INTERVAL, sleep=sleep)
    return Services(
        config=config,
        session_factory=session_factory,
        exchange=exchange,
        feed=feed,
        catalog=catalog,
        matcher=matcher,
        ledger=ledger,
        notifier=notifier,
        copy_settings=copy_settings,
        activity=activity,
        engine=engine,
        ingestor=ingestor,
        watcher=watcher,
        sweeper=sweeper,
    )
