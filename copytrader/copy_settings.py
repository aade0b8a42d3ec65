# copytrader/copy_settings.py
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from copytrader.errors import PersistenceError, ValidationError
from copytrader.models import CopySettingRow
from copytrader.schemas import CopySetting

logger = logging.getLogger(__name__)


def _number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def normalize_setting(raw: Dict[str, Any], owner: str) -> CopySetting:
    if not isinstance(raw, dict):
        raise ValidationError("Each copy setting must be an object")
    trader_id = raw.get("traderId", raw.get("trader_id"))
    if trader_id is None or str(trader_id).strip() == "":
        raise ValidationError("traderId is required")
    stop_loss = raw.get("stopLossPercent", raw.get("stop_loss_percent"))
    return CopySetting(
        trader_id=str(trader_id).strip(),
        is_active=_flag(raw.get("isActive", raw.get("is_active", False))),
        allocation_usd=max(_number(raw.get("allocationUsd", raw.get("allocation_usd"))), 0.0),
        max_position_percent=min(max(_number(raw.get("maxPositionPercent", raw.get("max_position_percent"))), 0.0), 100.0),
        stop_loss_percent=_number(stop_loss) if stop_loss is not None else None,
        copy_open_positions=_flag(raw.get("copyOpenPositions", raw.get("copy_open_positions", False))),
        owner=owner,
    )


def _to_setting(row: CopySettingRow) -> CopySetting:
    return CopySetting(
        trader_id=row.trader_id,
        is_active=row.is_active,
        allocation_usd=row.allocation_usd,
        max_position_percent=row.max_position_percent,
        stop_loss_percent=row.stop_loss_percent,
        copy_open_positions=row.copy_open_positions,
        owner=row.owner,
    )


def to_payload(setting: CopySetting) -> Dict[str, Any]:
    return {
        "traderId": setting.trader_id,
        "isActive": setting.is_active,
        "allocationUsd": setting.allocation_usd,
        "maxPositionPercent": setting.max_position_percent,
        "stopLossPercent": setting.stop_loss_percent,
        "copyOpenPositions": setting.copy_open_positions,
    }


class CopySettingsStore:
    """Follower copy rules. Writes replace a follower's whole list at once."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def read(self, owner: str) -> List[CopySetting]:
        with self.session_factory() as db:
            rows = (
                db.query(CopySettingRow)
                .filter(CopySettingRow.owner == owner)
                .order_by(CopySettingRow.position)
                .all()
            )
            return [_to_setting(r) for r in rows]

    def replace(self, owner: str, raw_settings: Iterable[Dict[str, Any]]) -> List[CopySetting]:
        if isinstance(raw_settings, (str, bytes, dict)) or raw_settings is None:
            raise ValidationError("Body must be an array of settings")
        by_trader: Dict[str, CopySetting] = {}
        for raw in raw_settings:
            setting = normalize_setting(raw, owner)
            # One rule per (follower, trader); a later entry wins
            by_trader.pop(setting.trader_id, None)
            by_trader[setting.trader_id] = setting
        cleaned = list(by_trader.values())
        try:
            with self.session_factory() as db:
                db.query(CopySettingRow).filter(CopySettingRow.owner == owner).delete(synchronize_session=False)
                for position, s in enumerate(cleaned):
                    db.add(CopySettingRow(
                        owner=owner,
                        position=position,
                        trader_id=s.trader_id,
                        is_active=s.is_active,
                        allocation_usd=s.allocation_usd,
                        max_position_percent=s.max_position_percent,
                        stop_loss_percent=s.stop_loss_percent,
                        copy_open_positions=s.copy_open_positions,
                    ))
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Copy settings write failed for {owner}: {e}") from e
        logger.info(f"Copy settings replaced for {owner}: {len(cleaned)} traders")
        return cleaned

    def for_trader(self, trader_id: str, active: Optional[bool] = True) -> List[CopySetting]:
        """Settings across all followers that track trader_id."""
        with self.session_factory() as db:
            query = db.query(CopySettingRow).filter(CopySettingRow.trader_id == trader_id)
            if active is not None:
                query = query.filter(CopySettingRow.is_active.is_(active))
            return [_to_setting(r) for r in query.order_by(CopySettingRow.owner, CopySettingRow.position).all()]

    def active_wallets(self) -> Dict[str, bool]:
        """Tracked wallet -> whether any active follower wants open positions copied."""
        with self.session_factory() as db:
            rows = db.query(CopySettingRow).filter(CopySettingRow.is_active.is_(True)).all()
            wallets: Dict[str, bool] = {}
            for row in rows:
                wallets[row.trader_id] = wallets.get(row.trader_id, False) or row.copy_open_positions
            return dict(sorted(wallets.items()))
