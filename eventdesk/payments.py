import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from eventdesk.errors import SettingsUnavailable
from eventdesk.platform_settings import get_commission_percent

logger = logging.getLogger(__name__)

PROCESSING_FEE_RATE = 0.03
DEFAULT_COMMISSION_PERCENT = Decimal("4.0")
VENUE_RENT = 0.0
VENUE_RENT_LABEL = "$0 per 30 min"


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 becomes Decimal("0.1") rather than its binary expansion.
    return Decimal(str(value))


def _cents(value: float) -> int:
    # Half toward +inf on the binary product, matching the stored ledger:
    # 7.50 * 0.03 is 0.22499999... and rounds to 0.22.
    scaled = value * 100
    whole = math.floor(scaled)
    return whole + 1 if scaled - whole >= 0.5 else whole


def _money(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2)


def round2(value) -> Decimal:
    return _money(_cents(float(value)))


@dataclass(frozen=True)
class PaymentBreakdown:
    gross_amount: Decimal
    venue_rent: Decimal
    venue_rent_label: str
    commission_percent: Decimal
    commission_amount: Decimal
    processing_fee: Decimal
    net_amount: Decimal
    payout_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "grossAmount": float(self.gross_amount),
            "venueRent": float(self.venue_rent),
            "venueRentLabel": self.venue_rent_label,
            "commissionPercent": float(self.commission_percent),
            "commissionAmount": float(self.commission_amount),
            "processingFee": float(self.processing_fee),
            "netAmount": float(self.net_amount),
            "payoutAmount": float(self.payout_amount),
        }


def calculate_payment_breakdown(
    gross_amount, commission_percent=DEFAULT_COMMISSION_PERCENT
) -> PaymentBreakdown:
    """Compute a breakdown for a known commission percent, without the settings store.

    Zero and negative amounts are not rejected here; callers validate
    amounts before charging.
    """
    percent = _to_decimal(commission_percent)
    gross = _cents(float(gross_amount)) / 100
    commission = _cents(gross * (float(percent) / 100)) / 100
    fee = _cents(gross * PROCESSING_FEE_RATE) / 100
    return PaymentBreakdown(
        gross_amount=round2(gross),
        venue_rent=round2(VENUE_RENT),
        venue_rent_label=VENUE_RENT_LABEL,
        commission_percent=percent,
        commission_amount=round2(commission),
        processing_fee=round2(fee),
        net_amount=round2(gross - fee),
        payout_amount=round2(gross - fee - commission - VENUE_RENT),
    )


def resolve_commission_percent(db: Session) -> Decimal:
    try:
        percent = get_commission_percent(db)
    except SettingsUnavailable as exc:
        logger.warning("commission setting unavailable, using default: %s", exc)
        return DEFAULT_COMMISSION_PERCENT
    if percent is None:
        return DEFAULT_COMMISSION_PERCENT
    return percent


def get_payment_breakdown(
    db: Session, gross_amount, commission_percent_override=None
) -> PaymentBreakdown:
    """Compute a breakdown using the platform commission setting.

    An explicit override skips the lookup. A failed lookup degrades to the
    default percent and the result is returned as usual.
    """
    if commission_percent_override is not None:
        percent = _to_decimal(commission_percent_override)
    else:
        percent = resolve_commission_percent(db)
    return calculate_payment_breakdown(gross_amount, percent)


def generate_payment_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"PAY-{year}-{secrets.randbelow(1_000_000):06d}"


def format_amount(amount, currency: str = "USD") -> str:
    value = round2(amount)
    sign = "-" if value < 0 else ""
    if currency.upper() == "USD":
        return f"{sign}${abs(value):,.2f}"
    return f"{sign}{abs(value):,.2f} {currency.upper()}"
