"""Resolve a free-text trade description to a single exchange ticker."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from copytrader.catalog import MarketCatalog
from copytrader.schemas import Market

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({"the", "will", "wins", "win", "election", "market"})
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

PHRASE_BONUS = 100
TITLE_TERM_SCORE = 3
OTHER_TERM_SCORE = 1
MULTI_TERM_FACTOR = 2
DEFAULT_MIN_SCORE = 3


def normalize(text: str) -> str:
    return " ".join(_NON_ALNUM.sub(" ", (text or "").lower()).split())


def search_terms(normalized: str) -> List[str]:
    return [t for t in normalized.split() if len(t) > 2 and t not in STOPWORDS]


@dataclass(frozen=True)
class Candidate:
    market: Market
    score: int
    matched_terms: int
    title_phrase: bool

    def sort_key(self):
        open_time = self.market.open_time or _EPOCH
        if open_time.tzinfo is None:
            open_time = open_time.replace(tzinfo=timezone.utc)
        return (
            -self.score,
            not self.title_phrase,
            -self.market.volume,
            -open_time.timestamp(),
            self.market.ticker,
        )


def score_market(market: Market, normalized: str, terms: Iterable[str]) -> Candidate:
    title = normalize(market.title)
    searchable = " ".join(filter(None, [title, normalize(market.subtitle or ""), normalize(market.ticker)]))

    score = 0
    matched = 0
    for term in terms:
        if term in title:
            score += TITLE_TERM_SCORE
            matched += 1
        elif term in searchable:
            score += OTHER_TERM_SCORE
            matched += 1
    if matched > 1:
        score += matched * MULTI_TERM_FACTOR

    title_phrase = bool(normalized) and normalized in title
    if bool(normalized) and normalized in searchable:
        score += PHRASE_BONUS
    return Candidate(market=market, score=score, matched_terms=matched, title_phrase=title_phrase)


def rank_markets(markets: Iterable[Market], query: str, min_score: int = DEFAULT_MIN_SCORE) -> List[Candidate]:
    """Candidates at or above min_score, best first, in a total order."""
    normalized = normalize(query)
    terms = search_terms(normalized)
    candidates = [score_market(m, normalized, terms) for m in markets]
    candidates = [c for c in candidates if c.score >= min_score]
    candidates.sort(key=Candidate.sort_key)
    return candidates


class MarketMatcher:
    def __init__(self, catalog: MarketCatalog, min_score: int = DEFAULT_MIN_SCORE):
        self.catalog = catalog
        self.min_score = min_score

    async def rank(self, query: str) -> List[Candidate]:
        markets = await self.catalog.markets()
        return rank_markets(markets, query, self.min_score)

    async def match(self, query: str) -> Optional[str]:
        """Best ticker for query, or None when nothing clears the threshold.

        Raises CatalogUnavailable when no market snapshot has ever loaded.
        """
        candidates = await self.rank(query)
        if not candidates:
            logger.warning(f"No market match for: {query!r}")
            return None
        best = candidates[0]
        logger.info(
            f"Matched {query!r} -> {best.market.ticker} "
            f"(score: {best.score}, matched terms: {best.matched_terms})"
        )
        return best.market.ticker

    def clear_cache(self):
        self.catalog.invalidate()
