from datetime import datetime, timezone

import pytest

from conftest import FakeExchange, make_market
from copytrader.catalog import MarketCatalog
from copytrader.matcher import (
    Candidate, MarketMatcher, normalize, rank_markets, score_market, search_terms
)


def test_normalize_strips_punctuation_and_case():
    assert normalize("  Trump WINS the 2024 Election!? ") == "trump wins the 2024 election"


def test_search_terms_drop_stopwords_and_short_words():
    assert search_terms("will trump win the 2024 election in ny") == ["trump", "2024"]


def test_title_terms_score_three_each_plus_multi_term_and_phrase_bonus():
    market = make_market("FED-RATE-CUT", "Fed cuts rates in March")
    normalized = normalize("Fed cuts rates")
    candidate = score_market(market, normalized, search_terms(normalized))
    # 3 title terms (9) + 3 matched * 2 (6) + whole phrase (100)
    assert candidate.score == 115
    assert candidate.matched_terms == 3
    assert candidate.title_phrase is True


def test_terms_outside_title_score_one():
    market = make_market("KXBTC", "Price above threshold", subtitle="Bitcoin")
    normalized = normalize("bitcoin solana")
    candidate = score_market(market, normalized, search_terms(normalized))
    assert candidate.score == 1
    assert candidate.matched_terms == 1


def test_single_title_term_meets_default_threshold():
    markets = [
        make_market("PRES-24-DJT", "Donald Trump wins presidency"),
        make_market("FED-RATE-CUT", "Fed cuts rates in March"),
    ]
    ranked = rank_markets(markets, "Trump wins 2024")
    assert [c.market.ticker for c in ranked] == ["PRES-24-DJT"]
    assert ranked[0].score == 3


def test_below_threshold_is_no_match():
    markets = [make_market("KXBTC", "Price above threshold", subtitle="Bitcoin")]
    assert rank_markets(markets, "bitcoin solana") == []


def test_ties_break_on_volume_then_open_time_then_ticker():
    early = datetime(2024, 1, 1, tzinfo=timezone.utc)
    late = datetime(2024, 6, 1, tzinfo=timezone.utc)
    markets = [
        make_market("BTC-D", "Bitcoin above 100k", volume=10, open_time=early),
        make_market("BTC-C", "Bitcoin above 100k", volume=10, open_time=early),
        make_market("BTC-B", "Bitcoin above 100k", volume=10, open_time=late),
        make_market("BTC-A", "Bitcoin above 100k", volume=99, open_time=early),
    ]
    ranked = rank_markets(markets, "bitcoin above 100k")
    assert [c.market.ticker for c in ranked] == ["BTC-A", "BTC-B", "BTC-C", "BTC-D"]


def test_phrase_in_title_beats_phrase_elsewhere_on_equal_score():
    in_title = Candidate(make_market("B", "x"), score=10, matched_terms=2, title_phrase=True)
    elsewhere = Candidate(make_market("A", "x"), score=10, matched_terms=2, title_phrase=False)
    assert sorted([elsewhere, in_title], key=Candidate.sort_key) == [in_title, elsewhere]


def test_ranking_is_independent_of_catalog_order():
    markets = [
        make_market("ETH-1", "Ethereum ETF approved", volume=5),
        make_market("ETH-2", "Ethereum ETF approved", volume=5),
    ]
    forward = [c.market.ticker for c in rank_markets(markets, "ethereum etf")]
    backward = [c.market.ticker for c in rank_markets(list(reversed(markets)), "ethereum etf")]
    assert forward == backward == ["ETH-1", "ETH-2"]


class TestMarketMatcher:
    @pytest.mark.asyncio
    async def test_match_returns_best_ticker(self):
        exchange = FakeExchange(markets=[
            make_market("PRES-24-DJT", "Donald Trump wins presidency"),
            make_market("PRES-24-KH", "Kamala Harris wins presidency"),
        ])
        matcher = MarketMatcher(MarketCatalog(exchange))
        assert await matcher.match("Harris wins 2024 presidency") == "PRES-24-KH"

    @pytest.mark.asyncio
    async def test_match_returns_none_without_candidates(self):
        matcher = MarketMatcher(MarketCatalog(FakeExchange(markets=[
            make_market("PRES-24-DJT", "Donald Trump wins presidency"),
        ])))
        assert await matcher.match("Lakers championship") is None

    @pytest.mark.asyncio
    async def test_min_score_is_configurable(self):
        exchange = FakeExchange(markets=[make_market("PRES-24-DJT", "Donald Trump wins presidency")])
        matcher = MarketMatcher(MarketCatalog(exchange), min_score=4)
        assert await matcher.match("Trump wins 2024") is None

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self):
        exchange = FakeExchange(markets=[make_market("PRES-24-DJT", "Donald Trump wins presidency")])
        matcher = MarketMatcher(MarketCatalog(exchange))
        await matcher.match("trump")
        await matcher.match("trump")
        assert exchange.market_calls == 1
        matcher.clear_cache()
        await matcher.match("trump")
        assert exchange.market_calls == 2
