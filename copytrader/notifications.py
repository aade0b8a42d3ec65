# copytrader/notifications.py
import logging
import uuid
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from copytrader.errors import PersistenceError
from copytrader.models import NotificationRow, from_db, to_db, utcnow
from copytrader.schemas import (
    Notification, NotificationInput, NotificationKind, NotificationType
)

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 100
NOTIFICATION_TTL_DAYS = 30

Listener = Callable[[str, Notification], Awaitable[None]]


def short_address(address: str) -> str:
    if not address or len(address) <= 8:
        return address
    return f"{address[:4]}...{address[-4:]}"


def _to_notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        type=NotificationType(row.type),
        kind=NotificationKind(row.kind),
        title=row.title,
        message=row.message,
        wallet_address=row.wallet_address,
        tx_signature=row.tx_signature,
        ledger_entry_id=row.ledger_entry_id,
        metadata=row.extra or {},
        read=row.read,
        created_at=from_db(row.created_at),
    )


class NotificationEmitter:
    """Per-user notification feed: newest first, bounded, with read state."""

    def __init__(self, session_factory, max_items: int = MAX_NOTIFICATIONS,
                 ttl_days: int = NOTIFICATION_TTL_DAYS):
        self.session_factory = session_factory
        self.max_items = max_items
        self.ttl_days = ttl_days
        self.listeners: List[Listener] = []

    def add_listener(self, listener: Listener):
        self.listeners.append(listener)

    async def emit(self, user_wallet: str, data: NotificationInput) -> Optional[Notification]:
        """Store a notification. Returns None when data.ledger_entry_id was already notified."""
        row = NotificationRow(
            id=uuid.uuid4().hex,
            owner=user_wallet,
            type=data.type.value,
            kind=data.kind.value,
            title=data.title,
            message=data.message,
            wallet_address=data.wallet_address,
            tx_signature=data.tx_signature,
            ledger_entry_id=data.ledger_entry_id,
            extra=data.metadata or None,
            read=False,
            created_at=to_db(utcnow()),
        )
        with self.session_factory() as db:
            try:
                db.add(row)
                db.flush()
                self._prune(db, user_wallet)
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"Notification for ledger entry {data.ledger_entry_id} already sent, skipping")
                return None
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Notification write failed for {user_wallet}: {e}") from e
            notification = _to_notification(row)

        for listener in self.listeners:
            try:
                await listener(user_wallet, notification)
            except Exception as e:
                logger.error(f"Notification listener failed for {user_wallet}: {e}")
        return notification

    def _prune(self, db, user_wallet: str):
        cutoff = to_db(utcnow() - timedelta(days=self.ttl_days))
        db.query(NotificationRow).filter(
            NotificationRow.owner == user_wallet, NotificationRow.created_at < cutoff
        ).delete(synchronize_session=False)
        overflow = (
            db.query(NotificationRow.id)
            .filter(NotificationRow.owner == user_wallet)
            .order_by(NotificationRow.created_at.desc(), NotificationRow.id.desc())
            .offset(self.max_items)
            .all()
        )
        if overflow:
            db.query(NotificationRow).filter(
                NotificationRow.id.in_([r.id for r in overflow])
            ).delete(synchronize_session=False)

    def list(self, user_wallet: str, limit: int = 50, offset: int = 0) -> Dict:
        with self.session_factory() as db:
            base = db.query(NotificationRow).filter(NotificationRow.owner == user_wallet)
            total = base.count()
            unread = base.filter(NotificationRow.read.is_(False)).count()
            rows = (
                base.order_by(NotificationRow.created_at.desc(), NotificationRow.id.desc())
                .offset(max(offset, 0))
                .limit(max(limit, 0))
                .all()
            )
            return {
                "notifications": [_to_notification(r) for r in rows],
                "total": total,
                "unread_count": unread,
            }

    def unread_count(self, user_wallet: str) -> int:
        with self.session_factory() as db:
            return db.query(NotificationRow).filter(
                NotificationRow.owner == user_wallet, NotificationRow.read.is_(False)
            ).count()

    def _mark(self, user_wallet: str, ids: Optional[Iterable[str]] = None) -> int:
        with self.session_factory() as db:
            query = db.query(NotificationRow).filter(
                NotificationRow.owner == user_wallet, NotificationRow.read.is_(False)
            )
            if ids is not None:
                query = query.filter(NotificationRow.id.in_(list(ids)))
            count = query.update({NotificationRow.read: True}, synchronize_session=False)
            db.commit()
            return count

    def mark_read(self, user_wallet: str, ids: Iterable[str]) -> int:
        return self._mark(user_wallet, ids)

    def mark_all_read(self, user_wallet: str) -> int:
        return self._mark(user_wallet)

    def clear(self, user_wallet: str) -> int:
        with self.session_factory() as db:
            count = db.query(NotificationRow).filter(
                NotificationRow.owner == user_wallet
            ).delete(synchronize_session=False)
            db.commit()
            return count


async def notify_trader_followed(emitter: NotificationEmitter, user_wallet: str,
                                 trader_id: str, trader_name: Optional[str] = None):
    name = trader_name or short_address(trader_id)
    return await emitter.emit(user_wallet, NotificationInput(
        type=NotificationType.INFO,
        kind=NotificationKind.TRADER_FOLLOWED,
        title="Now copying trader",
        message=f"You started copying {name}. You'll receive alerts for their trades.",
        wallet_address=trader_id,
        metadata={"traderId": trader_id, "traderName": name},
    ))


async def notify_trade_detected(emitter: NotificationEmitter, user_wallet: str, trader_id: str,
                                market_title: str, side: str, tx_signature: str,
                                dedup_key: Optional[str] = None):
    name = short_address(trader_id)
    return await emitter.emit(user_wallet, NotificationInput(
        type=NotificationType.TRADE,
        kind=NotificationKind.TRADE_DETECTED,
        title=f"{name} made a trade",
        message=f'{side.upper()} on "{market_title}"',
        wallet_address=trader_id,
        tx_signature=tx_signature,
        ledger_entry_id=dedup_key,
        metadata={"traderName": name, "marketTitle": market_title},
    ))


async def notify_copy_executed(emitter: NotificationEmitter, user_wallet: str, trader_id: str,
                               market_title: str, amount: float, ledger_entry_id: str,
                               tx_signature: Optional[str] = None, simulated: bool = False):
    name = short_address(trader_id)
    verb = "Simulated copy of" if simulated else "Copied"
    return await emitter.emit(user_wallet, NotificationInput(
        type=NotificationType.TRADE,
        kind=NotificationKind.COPY_EXECUTED,
        title="Copy trade executed",
        message=f"{verb} {name}'s trade on \"{market_title}\" for ${amount:.2f}",
        wallet_address=trader_id,
        tx_signature=tx_signature,
        ledger_entry_id=ledger_entry_id,
        metadata={"traderName": name, "marketTitle": market_title, "amount": amount},
    ))


async def notify_price_alert(emitter: NotificationEmitter, user_wallet: str, market_title: str,
                             ticker: str, price: float, direction: str):
    return await emitter.emit(user_wallet, NotificationInput(
        type=NotificationType.INFO,
        kind=NotificationKind.PRICE_ALERT,
        title=f"Price {'increased' if direction == 'up' else 'decreased'}",
        message=f'"{market_title}" is now at {price * 100:.0f}%',
        metadata={"marketId": ticker, "marketTitle": market_title, "price": price},
    ))
