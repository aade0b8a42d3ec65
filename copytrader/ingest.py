# copytrader/ingest.py
import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from copytrader.errors import PersistenceError, ValidationError
from copytrader.models import WalletActivity, from_db, to_db, utcnow
from copytrader.schemas import Action, Side, TradeEvent

logger = logging.getLogger(__name__)

STABLE_MINTS = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",  # USDT
}
# Known prediction market program IDs on Solana
PREDICTION_MARKET_PROGRAMS = {
    "drift": "dRiftyHA39MWEi3m9aunc5MzRF1JYuBsbn6VPcn33UH",
    "polymarket": "poly1111111111111111111111111111111111111111",
    "hedgehog": "HHoG5E6SPqwvMj8GQVDCFCvKGF63eZBwAkCFcFgrMkEE",
    "monaco": "monacoUXKtUi6vKsQwaLyxmXKSievfNWEcYXTgkbCih",
}
PLATFORM_KEYWORDS = ("drift", "polymarket", "kalshi")
_YES = re.compile(r"\byes\b")
_NO = re.compile(r"\bno\b")
_TRADE_WORDS = re.compile(r"\b(swap|swapped|trade|traded)\b")


class TokenTransfer(BaseModel):
    model_config = ConfigDict(extra="allow")

    fromUserAccount: Optional[str] = None
    toUserAccount: Optional[str] = None
    tokenAmount: float = 0.0
    mint: Optional[str] = None


class SwapLeg(BaseModel):
    model_config = ConfigDict(extra="allow")

    mint: Optional[str] = None
    amount: float = 0.0


class SwapEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    tokenInputs: List[SwapLeg] = Field(default_factory=list)
    tokenOutputs: List[SwapLeg] = Field(default_factory=list)


class TransactionEvents(BaseModel):
    model_config = ConfigDict(extra="allow")

    swap: Optional[SwapEvent] = None


class HeliusTransaction(BaseModel):
    """One enhanced transaction as delivered by the Helius webhook or API."""
    model_config = ConfigDict(extra="allow")

    signature: str = Field(min_length=1)
    feePayer: str = Field(min_length=1)
    description: str = ""
    timestamp: Optional[float] = None
    type: Optional[str] = None
    source: Optional[str] = None
    tokenTransfers: List[TokenTransfer] = Field(default_factory=list)
    nativeTransfers: List[Dict[str, Any]] = Field(default_factory=list)
    accountData: List[Dict[str, Any]] = Field(default_factory=list)
    instructions: List[Dict[str, Any]] = Field(default_factory=list)
    events: Optional[TransactionEvents] = None

    @property
    def program_ids(self) -> List[str]:
        return [ix.get("programId") for ix in self.instructions if ix.get("programId")]

    @property
    def swap(self) -> Optional[SwapEvent]:
        return self.events.swap if self.events else None


@dataclass(frozen=True)
class TradeDetails:
    action: Action
    amount: float  # stablecoin cost or proceeds
    size: float  # outcome tokens
    price: Optional[float]
    mint: Optional[str]


def detect_platform(tx: HeliusTransaction) -> str:
    source = (tx.source or "").lower()
    for platform in PLATFORM_KEYWORDS:
        if platform in source:
            return platform
    programs = {program: name for name, program in PREDICTION_MARKET_PROGRAMS.items()}
    for program_id in tx.program_ids:
        if program_id in programs:
            return programs[program_id]
    description = (tx.description or "").lower()
    for platform in PLATFORM_KEYWORDS:
        if platform in description:
            return platform
    return "unknown"


def is_prediction_market_trade(tx: HeliusTransaction) -> bool:
    """True when tx moves an outcome position rather than plain SOL, NFTs or tokens."""
    if any(p in PREDICTION_MARKET_PROGRAMS.values() for p in tx.program_ids):
        return True
    if tx.swap and any(o.mint not in STABLE_MINTS for o in tx.swap.tokenOutputs):
        return True
    if any(t.mint in STABLE_MINTS and tx.feePayer in (t.fromUserAccount, t.toUserAccount)
           for t in tx.tokenTransfers):
        return True
    if (tx.type or "").upper() == "SWAP":
        return True
    return bool(_TRADE_WORDS.search((tx.description or "").lower()))


def infer_side(description: str) -> Side:
    text = (description or "").lower()
    if _YES.search(text):
        return Side.YES
    if _NO.search(text):
        return Side.NO
    return Side.YES


def infer_trade(tx: HeliusTransaction) -> TradeDetails:
    """Direction, cost and size from the fee payer's transfers, refined by the swap event."""
    action = Action.BUY
    amount = 0.0
    size = 0.0
    stable = [t for t in tx.tokenTransfers if t.mint in STABLE_MINTS]
    outgoing = next((t for t in stable if t.fromUserAccount == tx.feePayer), None)
    incoming = next((t for t in stable if t.toUserAccount == tx.feePayer), None)
    if outgoing is not None:
        amount = outgoing.tokenAmount
    elif incoming is not None:
        action, amount = Action.SELL, incoming.tokenAmount

    position = next((t for t in tx.tokenTransfers if t.mint and t.mint not in STABLE_MINTS), None)
    mint = position.mint if position else None
    if position is not None:
        size = position.tokenAmount

    swap = tx.swap
    if swap and swap.tokenInputs and swap.tokenOutputs:
        stable_in = next((i for i in swap.tokenInputs if i.mint in STABLE_MINTS), None)
        stable_out = next((o for o in swap.tokenOutputs if o.mint in STABLE_MINTS), None)
        leg = None
        if stable_in is not None:
            action, amount = Action.BUY, stable_in.amount
            leg = next((o for o in swap.tokenOutputs if o.mint not in STABLE_MINTS), None)
        elif stable_out is not None:
            action, amount = Action.SELL, stable_out.amount
            leg = next((i for i in swap.tokenInputs if i.mint not in STABLE_MINTS), None)
        if leg is not None:
            size, mint = leg.amount, leg.mint or mint

    price = round(amount / size, 4) if amount and size else None
    if not amount:
        amount = size
    return TradeDetails(action=action, amount=amount, size=size, price=price, mint=mint)


def validate_transaction(raw: Any) -> HeliusTransaction:
    if not isinstance(raw, dict):
        raise ValidationError(f"Transaction payload must be an object, got {type(raw).__name__}")
    try:
        return HeliusTransaction.model_validate(raw)
    except PayloadError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid transaction payload ({fields})") from e


def to_trade_event(tx: HeliusTransaction, received_at: Optional[datetime] = None) -> TradeEvent:
    if tx.timestamp:
        try:
            occurred_at = datetime.fromtimestamp(tx.timestamp, tz=timezone.utc)
        except (OverflowError, ValueError, OSError) as e:
            raise ValidationError(f"Invalid transaction timestamp {tx.timestamp!r}: {e}") from e
    else:
        occurred_at = received_at or utcnow()
    details = infer_trade(tx)
    return TradeEvent(
        signature=tx.signature,
        wallet_address=tx.feePayer,
        occurred_at=occurred_at,
        raw_description=tx.description or "",
        side=infer_side(tx.description),
        action=details.action,
        platform=detect_platform(tx),
        counterparty_mint=details.mint,
        amount=details.amount,
        size=details.size,
        price=details.price,
    )


def parse_transaction(raw: Any, received_at: Optional[datetime] = None) -> TradeEvent:
    """Strictly parse an upstream payload into a TradeEvent, or raise ValidationError."""
    return to_trade_event(validate_transaction(raw), received_at)


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


class ActivityLog:
    """Per-wallet history of received activity, unique by signature.

    Doubles as the durable record used to drop redelivered events before
    they reach the engine. Capped per wallet and expired by age.
    """

    def __init__(self, session_factory, max_per_wallet: int = 50, ttl_days: int = 90):
        self.session_factory = session_factory
        self.max_per_wallet = max_per_wallet
        self.ttl_days = ttl_days

    def record(self, event: TradeEvent, raw: Dict[str, Any]) -> bool:
        """False when the signature was already recorded."""
        with self.session_factory() as db:
            try:
                db.add(WalletActivity(
                    wallet_address=event.wallet_address,
                    signature=event.signature,
                    description=event.raw_description,
                    occurred_at=to_db(event.occurred_at),
                    received_at=to_db(utcnow()),
                    raw_data=raw,
                ))
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Activity write failed for {event.signature}: {e}") from e
            try:
                self._trim(db, event.wallet_address)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning(f"Activity history trim failed for {event.wallet_address}: {e}")
        return True

    def forget(self, signature: str):
        with self.session_factory() as db:
            db.query(WalletActivity).filter(WalletActivity.signature == signature).delete()
            db.commit()

    def _trim(self, db, wallet: str):
        cutoff = to_db(utcnow() - timedelta(days=self.ttl_days))
        db.query(WalletActivity).filter(
            WalletActivity.wallet_address == wallet, WalletActivity.received_at < cutoff
        ).delete(synchronize_session=False)
        stale = (
            db.query(WalletActivity.id)
            .filter(WalletActivity.wallet_address == wallet)
            .order_by(WalletActivity.received_at.desc(), WalletActivity.id.desc())
            .offset(self.max_per_wallet)
            .all()
        )
        if stale:
            db.query(WalletActivity).filter(
                WalletActivity.id.in_([r.id for r in stale])
            ).delete(synchronize_session=False)
        db.commit()

    def recent(self, wallet: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            rows = (
                db.query(WalletActivity)
                .filter(WalletActivity.wallet_address == wallet)
                .order_by(WalletActivity.received_at.desc(), WalletActivity.id.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "signature": r.signature,
                    "description": r.description,
                    "timestamp": int(from_db(r.occurred_at).timestamp()) if r.occurred_at else None,
                    "receivedAt": from_db(r.received_at).isoformat(),
                    "raw": r.raw_data,
                }
                for r in rows
            ]


@dataclass
class IngestResult:
    received: int = 0
    processed: int = 0
    duplicates: int = 0
    skipped: int = 0
    rejected: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class TransactionIngestor:
    def __init__(self, activity: ActivityLog, engine):
        self.activity = activity
        self.engine = engine

    async def ingest(self, raw_events: Union[Dict[str, Any], Sequence[Any]]) -> IngestResult:
        if isinstance(raw_events, dict):
            raw_events = [raw_events]
        result = IngestResult(received=len(raw_events))
        for raw in raw_events:
            try:
                tx = validate_transaction(raw)
                if not is_prediction_market_trade(tx):
                    logger.info(f"Not a prediction market trade, skipping: {tx.signature}")
                    result.skipped += 1
                    continue
                event = to_trade_event(tx)
            except ValidationError as e:
                logger.warning(f"Rejected webhook payload: {e}")
                result.rejected += 1
                continue

            try:
                fresh = self.activity.record(event, raw)
            except PersistenceError as e:
                logger.error(f"Could not record {event.signature}: {e}")
                result.failed += 1
                continue
            if not fresh:
                logger.info(f"Duplicate transaction, skipping: {event.signature}")
                result.duplicates += 1
                continue

            try:
                await self.engine.process(event)
                result.processed += 1
            except Exception as e:
                logger.error(f"Processing {event.signature} failed: {e}")
                result.failed += 1
                # Let a redelivery retry it
                try:
                    self.activity.forget(event.signature)
                except SQLAlchemyError as forget_error:
                    logger.error(f"Could not release {event.signature} for retry: {forget_error}")
        logger.info(
            f"Webhook batch: {result.received} received, {result.processed} processed, "
            f"{result.duplicates} duplicate, {result.skipped} skipped, {result.rejected} rejected, {result.failed} failed"
        )
        return result
