from __future__ import annotations

import math
from decimal import Decimal

from accord.models import Agreement, PaymentType


def duration_in_weeks(agreement: Agreement) -> int:
    """Whole weeks spanned by the agreement, partial weeks rounded up."""
    if agreement.start_date is None or agreement.end_date is None:
        return 0
    days = (agreement.end_date - agreement.start_date).days
    return max(0, math.ceil(days / 7))


def total_cost(agreement: Agreement) -> Decimal | None:
    """Hourly cost over the full duration.

    Equity-only agreements have no cash component and cost 0. Returns None
    when the rate or the weekly hours are unknown.
    """
    if agreement.payment_type == PaymentType.EQUITY.value:
        return Decimal("0")
    if agreement.hourly_rate is None or agreement.weekly_hours is None:
        return None
    rate = Decimal(str(agreement.hourly_rate))
    if rate == 0:
        return Decimal("0")
    return rate * agreement.weekly_hours * duration_in_weeks(agreement)


def _amount(value) -> str:
    if isinstance(value, Decimal):
        return f"{value.normalize():f}"
    return str(value)


def payment_details(agreement: Agreement) -> str:
    rate = _amount(agreement.hourly_rate)
    hours = agreement.weekly_hours
    equity = _amount(agreement.equity_percentage)
    if agreement.payment_type == PaymentType.HOURLY.value:
        base = f"{rate}$/hour"
        return f"{base} for {hours}h/week" if hours is not None else base
    if agreement.payment_type == PaymentType.EQUITY.value:
        return f"{equity}% equity"
    if agreement.payment_type == PaymentType.HYBRID.value:
        if hours is not None:
            return f"{rate}$/hour, {hours}h/week + {equity}% equity"
        return f"{rate}$/hour + {equity}% equity"
    return ""
