# copytrader/ledger.py
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from copytrader.errors import NotFoundError, PersistenceError
from copytrader.models import LedgerEntryRow, from_db, to_db, utcnow
from copytrader.schemas import (
    EntryStatus, LedgerEntry, OriginalTrade, Page, TradeEvent, TradeFilter, TradeStats
)

logger = logging.getLogger(__name__)


def entry_id(signature: str, trader_id: str) -> str:
    return hashlib.sha256(f"{signature}:{trader_id}".encode("utf-8")).hexdigest()


def _to_entry(row: LedgerEntryRow) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        owner=row.owner,
        trader_id=row.trader_id,
        original_trade=OriginalTrade(
            market=row.market or "",
            side=row.side,
            action=row.action,
            platform=row.platform or "unknown",
            wallet_address=row.trader_id,
            amount=row.amount or 0.0,
            signature=row.signature,
        ),
        status=EntryStatus(row.status),
        kalshi_ticker=row.kalshi_ticker,
        size_usd=row.size_usd,
        order_id=row.order_id,
        error=row.error,
        is_simulation=row.is_simulation,
        created_at=from_db(row.created_at),
        executed_at=from_db(row.executed_at),
    )


class TradeLedger:
    """Append-only record of copy outcomes, one row per (owner, id)."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def reserve(self, owner: str, event: TradeEvent, trader_id: str,
                is_simulation: bool = True) -> Tuple[LedgerEntry, bool]:
        """Insert a pending entry unless one already exists.

        Returns (entry, reserved). reserved is False when another delivery got
        there first; the existing entry is returned instead.
        """
        now = utcnow()
        row = LedgerEntryRow(
            owner=owner,
            id=entry_id(event.signature, trader_id),
            trader_id=trader_id,
            signature=event.signature,
            market=event.raw_description,
            side=event.side.value,
            action=event.action.value,
            platform=event.platform,
            amount=event.amount,
            occurred_at=to_db(event.occurred_at),
            status=EntryStatus.PENDING.value,
            is_simulation=is_simulation,
            created_at=to_db(now),
        )
        return self._insert(row)

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Idempotent by id: re-appending returns the stored entry untouched."""
        trade = entry.original_trade
        row = LedgerEntryRow(
            owner=entry.owner,
            id=entry.id,
            trader_id=entry.trader_id,
            signature=trade.signature,
            market=trade.market,
            side=trade.side.value,
            action=trade.action.value,
            platform=trade.platform,
            amount=trade.amount,
            occurred_at=to_db(entry.created_at),
            status=entry.status.value,
            kalshi_ticker=entry.kalshi_ticker,
            size_usd=entry.size_usd,
            order_id=entry.order_id,
            error=entry.error,
            is_simulation=entry.is_simulation,
            created_at=to_db(entry.created_at),
            executed_at=to_db(entry.executed_at),
        )
        stored, _ = self._insert(row)
        return stored

    def _insert(self, row: LedgerEntryRow) -> Tuple[LedgerEntry, bool]:
        owner, key = row.owner, row.id
        with self.session_factory() as db:
            try:
                db.add(row)
                db.commit()
                return _to_entry(row), True
            except IntegrityError:
                db.rollback()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Ledger insert failed for {key}: {e}") from e
        existing = self.get(owner, key)
        if existing is None:
            raise PersistenceError(f"Ledger entry {key} conflicted but cannot be read back")
        return existing, False

    def finalize(self, owner: str, key: str, status: EntryStatus, **fields) -> LedgerEntry:
        """Move a pending entry to a terminal status. Terminal entries are never rewritten."""
        if status == EntryStatus.PENDING:
            raise ValueError("finalize needs a terminal status")
        values = {"status": status.value}
        for name in ("kalshi_ticker", "size_usd", "order_id", "error"):
            if name in fields:
                values[name] = fields[name]
        if status == EntryStatus.EXECUTED:
            values["executed_at"] = to_db(fields.get("executed_at") or utcnow())
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(LedgerEntryRow)
                    .where(LedgerEntryRow.owner == owner, LedgerEntryRow.id == key,
                           LedgerEntryRow.status == EntryStatus.PENDING.value)
                    .values(**values)
                )
                db.commit()
                changed = result.rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(f"Ledger finalize failed for {key}: {e}") from e
        entry = self.get(owner, key)
        if entry is None:
            raise NotFoundError(f"Ledger entry {key} not found")
        if not changed:
            logger.warning(f"Ledger entry {key} already {entry.status.value}, kept as is")
        return entry

    def get(self, owner: str, key: str) -> Optional[LedgerEntry]:
        try:
            with self.session_factory() as db:
                row = db.get(LedgerEntryRow, (owner, key))
                return _to_entry(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Ledger read failed for {key}: {e}") from e

    def _page(self, query, limit: int, offset: int) -> Page:
        limit = max(int(limit), 0)
        offset = max(int(offset), 0)
        total = query.order_by(None).count()
        rows = (
            query.order_by(LedgerEntryRow.created_at.desc(), LedgerEntryRow.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return Page(items=[_to_entry(r) for r in rows], total=total, limit=limit, offset=offset)

    def recent_global(self, limit: int = 50, offset: int = 0, owner: Optional[str] = None) -> Page:
        with self.session_factory() as db:
            query = db.query(LedgerEntryRow)
            if owner:
                query = query.filter(LedgerEntryRow.owner == owner)
            return self._page(query, limit, offset)

    def by_wallet(self, wallet: str, limit: int = 50, offset: int = 0,
                  filter: Optional[TradeFilter] = None) -> Page:
        with self.session_factory() as db:
            query = db.query(LedgerEntryRow).filter(LedgerEntryRow.trader_id == wallet)
            if filter:
                if filter.platform:
                    query = query.filter(LedgerEntryRow.platform == filter.platform)
                if filter.side:
                    query = query.filter(LedgerEntryRow.side == filter.side.value)
                if filter.action:
                    query = query.filter(LedgerEntryRow.action == filter.action.value)
                if filter.start_time:
                    query = query.filter(LedgerEntryRow.occurred_at >= to_db(filter.start_time))
                if filter.end_time:
                    query = query.filter(LedgerEntryRow.occurred_at <= to_db(filter.end_time))
            return self._page(query, limit, offset)

    def stats(self, wallet: str) -> TradeStats:
        with self.session_factory() as db:
            rows = (
                db.query(LedgerEntryRow.status, LedgerEntryRow.platform,
                         func.count(LedgerEntryRow.id), func.coalesce(func.sum(LedgerEntryRow.size_usd), 0.0))
                .filter(LedgerEntryRow.trader_id == wallet)
                .group_by(LedgerEntryRow.status, LedgerEntryRow.platform)
                .all()
            )
        stats = TradeStats()
        for status, platform, count, volume in rows:
            stats.total_trades += count
            platform = platform or "unknown"
            stats.platforms[platform] = stats.platforms.get(platform, 0) + count
            if status == EntryStatus.EXECUTED.value:
                stats.executed += count
                stats.total_volume += float(volume)
            elif status == EntryStatus.FAILED.value:
                stats.failed += count
            elif status == EntryStatus.SKIPPED.value:
                stats.skipped += count
        if stats.executed:
            stats.avg_trade_size = stats.total_volume / stats.executed
        decided = stats.executed + stats.failed
        if decided:
            stats.win_rate = round(stats.executed / decided * 100, 1)
        return stats

    def resolve_stale_pending(self, max_age_seconds: float, now: Optional[datetime] = None) -> int:
        """Fail entries stuck in pending, e.g. after a crash mid-processing."""
        cutoff = (now or utcnow()) - timedelta(seconds=max_age_seconds)
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(LedgerEntryRow)
                    .where(LedgerEntryRow.status == EntryStatus.PENDING.value,
                           LedgerEntryRow.created_at < to_db(cutoff))
                    .values(status=EntryStatus.FAILED.value, error="Interrupted before completion")
                )
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Pending sweep failed: {e}") from e
        if result.rowcount:
            logger.warning(f"Resolved {result.rowcount} stale pending ledger entries to failed")
        return result.rowcount
