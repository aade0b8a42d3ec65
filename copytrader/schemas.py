# copytrader/schemas.py
import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Side(str, enum.Enum):
    YES = "yes"
    NO = "no"


class Action(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class MarketStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    SETTLED = "settled"


class EntryStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = (EntryStatus.EXECUTED, EntryStatus.FAILED, EntryStatus.SKIPPED)


class NotificationType(str, enum.Enum):
    TRADE = "trade"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class NotificationKind(str, enum.Enum):
    TRADER_FOLLOWED = "trader_followed"
    TRADE_DETECTED = "trade_detected"
    COPY_EXECUTED = "copy_executed"
    PRICE_ALERT = "price_alert"
    GENERIC = "generic"


class TradeEvent(BaseModel):
    """A detected on-chain trade by a tracked wallet."""
    model_config = ConfigDict(frozen=True)

    signature: str
    wallet_address: str
    occurred_at: datetime
    raw_description: str = ""
    side: Side = Side.YES
    action: Action = Action.BUY
    platform: str = "unknown"
    counterparty_mint: Optional[str] = None
    amount: float = 0.0
    size: float = 0.0
    price: Optional[float] = None


class Market(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    title: str
    subtitle: Optional[str] = None
    status: MarketStatus = MarketStatus.OPEN
    volume: float = 0.0
    open_time: Optional[datetime] = None
    yes_ask: Optional[int] = None  # cents
    no_ask: Optional[int] = None


class CopySetting(BaseModel):
    model_config = ConfigDict(frozen=True)

    trader_id: str
    is_active: bool = True
    allocation_usd: float = Field(default=0.0, ge=0)
    max_position_percent: float = Field(default=0.0, ge=0, le=100)
    stop_loss_percent: Optional[float] = None  # stored, not enforced
    copy_open_positions: bool = False
    owner: str = "default"


class OriginalTrade(BaseModel):
    model_config = ConfigDict(frozen=True)

    market: str
    side: Side
    action: Action
    platform: str
    wallet_address: str
    amount: float = 0.0
    signature: str


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner: str
    trader_id: str
    original_trade: OriginalTrade
    status: EntryStatus
    kalshi_ticker: Optional[str] = None
    size_usd: Optional[float] = None
    order_id: Optional[str] = None
    error: Optional[str] = None
    is_simulation: bool = True
    created_at: datetime
    executed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: NotificationType
    kind: NotificationKind = NotificationKind.GENERIC
    title: str
    message: str
    wallet_address: Optional[str] = None
    tx_signature: Optional[str] = None
    ledger_entry_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime


class NotificationInput(BaseModel):
    """What callers hand to NotificationEmitter.emit."""
    type: NotificationType = NotificationType.INFO
    kind: NotificationKind = NotificationKind.GENERIC
    title: str
    message: str
    wallet_address: Optional[str] = None
    tx_signature: Optional[str] = None
    ledger_entry_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TradeFilter(BaseModel):
    platform: Optional[str] = None
    side: Optional[Side] = None
    action: Optional[Action] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class Page(BaseModel):
    items: List[LedgerEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class TradeStats(BaseModel):
    total_trades: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    total_volume: float = 0.0
    avg_trade_size: float = 0.0
    win_rate: float = 0.0
    platforms: Dict[str, int] = Field(default_factory=dict)
