# copytrader/models.py
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, JSON, Text, UniqueConstraint
)

from copytrader.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(dt):
    """Columns hold naive UTC; SQLite would drop the offset anyway."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def from_db(dt):
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class CopySettingRow(Base):
    __tablename__ = "copy_settings"
    id = Column(Integer, primary_key=True)
    owner = Column(String(64), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    trader_id = Column(String(64), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    allocation_usd = Column(Float, default=0.0, nullable=False)
    max_position_percent = Column(Float, default=0.0, nullable=False)
    stop_loss_percent = Column(Float, nullable=True)
    copy_open_positions = Column(Boolean, default=False, nullable=False)


class LedgerEntryRow(Base):
    __tablename__ = "ledger_entries"
    owner = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)  # sha256(signature:trader_id)
    trader_id = Column(String(64), nullable=False, index=True)
    signature = Column(String(128), nullable=False)
    market = Column(Text)
    side = Column(String(8))  # yes/no
    action = Column(String(8))  # buy/sell
    platform = Column(String(32), index=True)
    amount = Column(Float, default=0.0)
    occurred_at = Column(DateTime, index=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    kalshi_ticker = Column(String(100))
    size_usd = Column(Float)
    order_id = Column(String(100))
    error = Column(Text)
    is_simulation = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    executed_at = Column(DateTime)


class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("owner", "ledger_entry_id", name="uq_notification_entry"),)
    id = Column(String(32), primary_key=True)
    owner = Column(String(64), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    kind = Column(String(32), nullable=False, default="generic")
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    wallet_address = Column(String(64))
    tx_signature = Column(String(128))
    ledger_entry_id = Column(String(80), nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)


class WalletActivity(Base):
    __tablename__ = "wallet_activity"
    id = Column(Integer, primary_key=True)
    wallet_address = Column(String(64), nullable=False, index=True)
    signature = Column(String(128), unique=True, nullable=False)
    description = Column(Text)
    occurred_at = Column(DateTime)
    received_at = Column(DateTime, nullable=False, index=True)
    raw_data = Column(JSON)
