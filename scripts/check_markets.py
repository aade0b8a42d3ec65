# scripts/check_markets.py: see which Kalshi market a trade description maps to
#   python scripts/check_markets.py "Trump wins 2024 election"
import argparse
import asyncio

from copytrader.catalog import MarketCatalog
from copytrader.config import settings
from copytrader.kalshi_client import KalshiClient
from copytrader.matcher import MarketMatcher


async def run(query: str, top: int):
    async with KalshiClient(settings) as client:
        catalog = MarketCatalog(
            client,
            fetch_limit=settings.MARKET_FETCH_LIMIT,
            max_pages=settings.MARKET_FETCH_MAX_PAGES,
        )
        matcher = MarketMatcher(catalog, min_score=settings.MATCH_MIN_SCORE)
        candidates = await matcher.rank(query)
        print(f"{len(catalog)} open markets, {len(candidates)} candidates for {query!r}")
        for c in candidates[:top]:
            print(f"  {c.score:>4}  {c.market.ticker:<32} {c.market.title}  ({c.matched_terms} terms)")
        if not candidates:
            print("  no match")


def main():
    parser = argparse.ArgumentParser(description="Rank open Kalshi markets against a trade description")
    parser.add_argument("query")
    parser.add_argument("--top", type=int, default=5)
    args = parser.parse_args()
    asyncio.run(run(args.query, args.top))


if __name__ == "__main__":
    main()
