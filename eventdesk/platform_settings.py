from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from eventdesk.errors import SettingsUnavailable
from eventdesk.models import PlatformSetting

COMMISSION_KEY = "commission_percent"
MIN_COMMISSION_PERCENT = Decimal("0")
MAX_COMMISSION_PERCENT = Decimal("100")
PERCENT_STEP = Decimal("0.01")


def get_setting(db: Session, key: str) -> Optional[str]:
    setting = db.get(PlatformSetting, key)
    return setting.value if setting else None


def upsert_setting(db: Session, key: str, value: str) -> PlatformSetting:
    setting = db.get(PlatformSetting, key)
    if setting is None:
        setting = PlatformSetting(key=key, value=value)
        db.add(setting)
    else:
        setting.value = value
    db.commit()
    db.refresh(setting)
    return setting


def _in_range(percent: Decimal) -> bool:
    return MIN_COMMISSION_PERCENT <= percent <= MAX_COMMISSION_PERCENT


def _has_cent_precision(percent: Decimal) -> bool:
    # Payments store the percent as Numeric(5, 2).
    return percent == percent.quantize(PERCENT_STEP)


def get_commission_percent(db: Session) -> Optional[Decimal]:
    try:
        raw = get_setting(db, COMMISSION_KEY)
    except SQLAlchemyError as exc:
        db.rollback()
        raise SettingsUnavailable(f"could not read {COMMISSION_KEY}") from exc
    if raw is None:
        return None
    try:
        percent = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise SettingsUnavailable(f"{COMMISSION_KEY} is not a number: {raw!r}") from exc
    if not percent.is_finite() or not _in_range(percent):
        raise SettingsUnavailable(f"{COMMISSION_KEY} out of range: {raw!r}")
    if not _has_cent_precision(percent):
        raise SettingsUnavailable(f"{COMMISSION_KEY} has more than two decimals: {raw!r}")
    return percent


def set_commission_percent(db: Session, percent) -> Decimal:
    value = Decimal(str(percent))
    if not value.is_finite() or not _in_range(value):
        raise ValueError("commission percent must be between 0 and 100")
    if not _has_cent_precision(value):
        raise ValueError("commission percent allows at most two decimals")
    upsert_setting(db, COMMISSION_KEY, str(value))
    return value
