from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional

from dateutil.relativedelta import relativedelta

NON_CONTRIBUTING_STATUSES = frozenset({"incomplete", "incomplete_expired"})


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def month_start(value: datetime) -> datetime:
    value = as_utc(value).astimezone(timezone.utc)
    return datetime(value.year, value.month, 1, tzinfo=timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    return value + relativedelta(months=months)


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months from the month of `start` to the month of `end`."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_key(value: datetime) -> str:
    return value.strftime("%Y-%m-01")


def normalized_mrr(subscription: Mapping) -> int:
    """
    Monthly value of one subscription in cents.
    Yearly amounts are divided by 12 and rounded half up, in integer arithmetic.
    """
    amount = int(subscription.get("plan_amount_cents") or 0) * int(subscription.get("quantity") or 1)
    if subscription.get("plan_interval") == "year":
        return (2 * amount + 12) // 24
    return amount


def counts_toward_mrr(subscription: Mapping) -> bool:
    return subscription.get("status") not in NON_CONTRIBUTING_STATUSES


def overlaps(subscription: Mapping, window_start: datetime, window_end: datetime) -> bool:
    """True when the subscription was running at some point in [window_start, window_end)."""
    started_at = as_utc(subscription.get("started_at"))
    if started_at is None or started_at >= window_end:
        return False
    ended_at = as_utc(subscription.get("ended_at"))
    return ended_at is None or ended_at > window_start


def round_rate(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
