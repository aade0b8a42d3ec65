import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from copytrader.copy_settings import to_payload
from copytrader.errors import NotFoundError, ValidationError
from copytrader.ingest import verify_signature
from copytrader.notifications import notify_trader_followed
from copytrader.schemas import (
    Action, LedgerEntry, Notification, NotificationInput, NotificationKind,
    NotificationType, Page, Side, TradeFilter
)

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PAGE = 500


def get_services(request: Request):
    return request.app.state.services


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def entry_json(entry: LedgerEntry) -> Dict[str, Any]:
    trade = entry.original_trade
    return {
        "id": entry.id,
        "originalTrade": {
            "market": trade.market,
            "side": trade.side.value,
            "action": trade.action.value,
            "platform": trade.platform,
            "walletAddress": trade.wallet_address,
            "amount": trade.amount,
            "signature": trade.signature,
        },
        "status": entry.status.value,
        "kalshiTicker": entry.kalshi_ticker,
        "sizeUsd": entry.size_usd,
        "orderId": entry.order_id,
        "error": entry.error,
        "isSimulation": entry.is_simulation,
        "createdAt": _iso(entry.created_at),
        "executedAt": _iso(entry.executed_at),
    }


def notification_json(n: Notification) -> Dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type.value,
        "kind": n.kind.value,
        "title": n.title,
        "message": n.message,
        "walletAddress": n.wallet_address,
        "txSignature": n.tx_signature,
        "metadata": n.metadata,
        "read": n.read,
        "createdAt": _iso(n.created_at),
    }


def page_json(page: Page) -> Dict[str, Any]:
    return {
        "trades": [entry_json(e) for e in page.items],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
        "hasMore": page.has_more,
    }


def _require_wallet(wallet: Optional[str]) -> str:
    if not wallet or not wallet.strip():
        raise ValidationError("Wallet address is required")
    return wallet.strip()


def _from_epoch(value: Optional[int], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, ValueError, OSError) as e:
        raise ValidationError(f"{name} is not a valid epoch timestamp: {value}") from e


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError(f"Body is not valid JSON: {e}") from e


# Ingestion
@router.post("/api/webhooks/helius")
async def helius_webhook(request: Request, services=Depends(get_services)):
    body = await request.body()
    secret = services.config.HELIUS_WEBHOOK_SECRET
    if secret and not verify_signature(body, request.headers.get("x-helius-signature"), secret):
        logger.error("[Webhook] Invalid signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ValidationError(f"Body is not valid JSON: {e}") from e
    if not isinstance(payload, (dict, list)):
        raise ValidationError("Body must be a transaction object or an array of them")

    result = await services.ingestor.ingest(payload)
    return {"success": True, **result.as_dict()}


@router.get("/api/webhooks/helius")
async def helius_webhook_status(wallet: Optional[str] = None, limit: int = Query(50, ge=1, le=50),
                                services=Depends(get_services)):
    if not wallet:
        return {
            "status": "ok",
            "endpoint": "/api/webhooks/helius",
            "description": "Helius webhook receiver for prediction market trades",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    transactions = services.activity.recent(wallet, limit=limit)
    return {"wallet": wallet, "transactions": transactions, "count": len(transactions)}


# Copy settings
@router.get("/api/copy-settings")
async def get_copy_settings(wallet: Optional[str] = None, services=Depends(get_services)):
    owner = wallet or services.config.DEFAULT_FOLLOWER
    return {"settings": [to_payload(s) for s in services.copy_settings.read(owner)]}


@router.post("/api/copy-settings")
async def update_copy_settings(request: Request, wallet: Optional[str] = None,
                               services=Depends(get_services)):
    owner = wallet or services.config.DEFAULT_FOLLOWER
    body = await _json_body(request)
    if not isinstance(body, list):
        raise ValidationError("Body must be an array of settings")

    before = {s.trader_id for s in services.copy_settings.read(owner) if s.is_active}
    cleaned = services.copy_settings.replace(owner, body)
    for setting in cleaned:
        if setting.is_active and setting.trader_id not in before:
            await notify_trader_followed(services.notifier, owner, setting.trader_id)
    return {"ok": True, "settings": [to_payload(s) for s in cleaned]}


# Ledger
@router.get("/api/trades/recent")
async def recent_trades(limit: int = Query(50, ge=0, le=MAX_PAGE), offset: int = Query(0, ge=0),
                        wallet: Optional[str] = None, services=Depends(get_services)):
    page = services.ledger.recent_global(limit=limit, offset=offset, owner=wallet)
    return {"success": True, **page_json(page)}


@router.get("/api/trades/{wallet}")
async def wallet_trades(
    wallet: str,
    limit: int = Query(50, ge=0, le=MAX_PAGE),
    offset: int = Query(0, ge=0),
    platform: Optional[str] = None,
    position: Optional[str] = None,
    action: Optional[str] = None,
    startTime: Optional[int] = None,
    endTime: Optional[int] = None,
    stats: bool = False,
    services=Depends(get_services),
):
    trade_filter = TradeFilter(
        platform=platform or None,
        side=Side(position) if position in ("yes", "no") else None,
        action=Action(action) if action in ("buy", "sell") else None,
        start_time=_from_epoch(startTime, "startTime"),
        end_time=_from_epoch(endTime, "endTime"),
    )
    page = services.ledger.by_wallet(wallet, limit=limit, offset=offset, filter=trade_filter)
    response = {"success": True, "wallet": wallet, **page_json(page), "stats": None}
    if stats:
        response["stats"] = services.ledger.stats(wallet).model_dump()
    return response


# Notifications
@router.get("/api/notifications")
async def list_notifications(wallet: Optional[str] = None, limit: int = Query(50, ge=0, le=MAX_PAGE),
                             offset: int = Query(0, ge=0), services=Depends(get_services)):
    wallet = _require_wallet(wallet)
    result = services.notifier.list(wallet, limit=limit, offset=offset)
    return {
        "notifications": [notification_json(n) for n in result["notifications"]],
        "total": result["total"],
        "unreadCount": result["unread_count"],
    }


@router.post("/api/notifications/read")
async def mark_notifications_read(request: Request, services=Depends(get_services)):
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Body must be an object")
    wallet = _require_wallet(body.get("wallet"))
    if body.get("all"):
        marked = services.notifier.mark_all_read(wallet)
    else:
        ids: List[str] = body.get("notificationIds") or ([body["notificationId"]] if body.get("notificationId") else [])
        if not ids:
            raise ValidationError("notificationId, notificationIds or all is required")
        marked = services.notifier.mark_read(wallet, ids)
        if marked == 0 and len(ids) == 1:
            raise NotFoundError(f"Notification {ids[0]} not found or already read")
    return {"success": True, "marked": marked, "unreadCount": services.notifier.unread_count(wallet)}


@router.post("/api/notifications/clear")
async def clear_notifications(request: Request, services=Depends(get_services)):
    body = await _json_body(request)
    wallet = _require_wallet(body.get("wallet") if isinstance(body, dict) else None)
    return {"success": True, "cleared": services.notifier.clear(wallet)}


@router.post("/api/notifications/create")
async def create_notification(request: Request, services=Depends(get_services)):
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Body must be an object")
    wallet = _require_wallet(body.get("wallet"))
    if not body.get("title") or not body.get("message"):
        raise ValidationError("title and message are required")
    try:
        data = NotificationInput(
            type=NotificationType(body.get("type", "info")),
            kind=NotificationKind(body.get("kind", "generic")),
            title=str(body["title"]),
            message=str(body["message"]),
            wallet_address=body.get("walletAddress"),
            tx_signature=body.get("txSignature"),
            metadata=body.get("metadata") or {},
        )
    except ValueError as e:
        raise ValidationError(f"Invalid notification: {e}") from e
    notification = await services.notifier.emit(wallet, data)
    return {"success": True, "notification": notification_json(notification)}


# Markets (operator)
@router.get("/api/markets/match")
async def match_market(q: str, services=Depends(get_services)):
    candidates = await services.matcher.rank(q)
    return {
        "query": q,
        "ticker": candidates[0].market.ticker if candidates else None,
        "candidates": [
            {"ticker": c.market.ticker, "title": c.market.title, "score": c.score,
             "matchedTerms": c.matched_terms}
            for c in candidates[:10]
        ],
    }


@router.post("/api/markets/refresh")
async def refresh_markets(services=Depends(get_services)):
    services.matcher.clear_cache()
    markets = await services.catalog.refresh()
    return {"success": True, "markets": len(markets)}


@router.get("/health")
async def health(services=Depends(get_services)):
    config = services.config
    return {
        "status": "ok",
        "mode": config.ENVIRONMENT,
        "dry_run": config.DRY_RUN,
        "markets_cached": len(services.catalog),
        "watcher_running": services.watcher.task.running,
    }
