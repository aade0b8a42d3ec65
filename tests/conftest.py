"""Shared fixtures: a throwaway SQLite database per test and in-memory upstreams."""
from datetime import datetime, timezone

import pytest

from copytrader.config import Settings
from copytrader.db import init_db, make_engine, make_session_factory
from copytrader.schemas import Action, Market, MarketStatus, Side, TradeEvent
from copytrader.services import build_services


class FakeExchange:
    """Stands in for KalshiClient."""

    def __init__(self, markets=None, balance=1000.0):
        self.markets = list(markets or [])
        self.balance = balance
        self.orders = []
        self.market_calls = 0
        self.error = None
        self.order_error = None
        self.gate = None

    async def get_markets(self, status="open", limit=1000, max_pages=1):
        self.market_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.markets)

    async def get_balance(self):
        return self.balance

    async def create_order(self, ticker, action, side, count, client_order_id=None):
        if self.order_error is not None:
            raise self.order_error
        order = {
            "order_id": f"ord-{len(self.orders) + 1}",
            "ticker": ticker,
            "action": action,
            "side": side,
            "count": count,
            "client_order_id": client_order_id,
            "status": "resting",
        }
        self.orders.append(order)
        return order


class FakeFeed:
    """Stands in for HeliusClient: wallet -> list of transactions, or an exception."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    async def get_recent_transactions(self, wallet, limit=1):
        self.calls.append(wallet)
        response = self.responses.get(wallet, [])
        if isinstance(response, Exception):
            raise response
        return response[:limit]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_market(ticker, title, volume=0.0, subtitle=None, open_time=None,
                yes_ask=None, no_ask=None, status=MarketStatus.OPEN):
    return Market(
        ticker=ticker,
        title=title,
        subtitle=subtitle,
        status=status,
        volume=volume,
        open_time=open_time,
        yes_ask=yes_ask,
        no_ask=no_ask,
    )


def make_event(signature="sig-1", wallet="Trader1", description="Trump wins 2024",
               side=Side.YES, action=Action.BUY, platform="drift", amount=25.0,
               occurred_at=None):
    return TradeEvent(
        signature=signature,
        wallet_address=wallet,
        occurred_at=occurred_at or datetime(2024, 10, 1, 12, 0, tzinfo=timezone.utc),
        raw_description=description,
        side=side,
        action=action,
        platform=platform,
        amount=amount,
    )


def make_setting(trader_id="Trader1", allocation=500.0, percent=5.0,
                 active=True, copy_open=False):
    return {
        "traderId": trader_id,
        "isActive": active,
        "allocationUsd": allocation,
        "maxPositionPercent": percent,
        "copyOpenPositions": copy_open,
    }


DEFAULT_MARKETS = [
    make_market("PRES-24-DJT", "Donald Trump wins presidency", volume=100, yes_ask=50, no_ask=52),
    make_market("FED-RATE-CUT", "Fed cuts rates in March", volume=500, yes_ask=30, no_ask=72),
]


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def config(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        ENVIRONMENT="test",
        DRY_RUN=True,
        DEFAULT_BANKROLL=10000.0,
        KALSHI_API_KEY_ID=None,
        KALSHI_PRIVATE_KEY=None,
        HELIUS_API_KEY=None,
        HELIUS_WEBHOOK_SECRET=None,
        WATCHER_ENABLED=False,
    )


@pytest.fixture
def exchange():
    return FakeExchange(markets=DEFAULT_MARKETS)


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def services(config, session_factory, exchange, feed):
    return build_services(config, session_factory=session_factory, exchange=exchange, feed=feed)


@pytest.fixture
def clock():
    return FakeClock()
