"""
MRR snapshot engine.

Rebuilds "who was paying how much, in which month" from the stored
subscription intervals and classifies the month-over-month movement:

    mrr(m) = mrr(m-1) + new + expansion + reactivation - contraction - churned

Every figure is an integer sum of the same per-customer monthly values,
so the identity holds exactly.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Set

from core.logger import Logger
from .models import MrrSnapshot
from .utils import (
    add_months,
    as_utc,
    counts_toward_mrr,
    month_key,
    month_start,
    normalized_mrr,
    overlaps,
)

logger = Logger(__name__)


def mrr_by_customer(subscriptions: Iterable[Mapping], window_start: datetime, window_end: datetime) -> Dict[str, int]:
    """Normalized MRR per customer over every qualifying subscription running in the window."""
    totals: Dict[str, int] = {}
    for sub in subscriptions:
        customer_id = sub.get("stripe_customer_id")
        if not customer_id or not counts_toward_mrr(sub):
            continue
        if not overlaps(sub, window_start, window_end):
            continue
        totals[customer_id] = totals.get(customer_id, 0) + normalized_mrr(sub)
    return totals


def started_within(subscriptions: Iterable[Mapping], window_start: datetime, window_end: datetime) -> Set[str]:
    """Customers with a qualifying subscription whose `started_at` falls in [window_start, window_end)."""
    started = set()
    for sub in subscriptions:
        started_at = as_utc(sub.get("started_at"))
        if started_at is None or not counts_toward_mrr(sub):
            continue
        if window_start <= started_at < window_end:
            started.add(sub.get("stripe_customer_id"))
    return started


def month_range(subscriptions: List[Mapping], now: datetime) -> List[datetime]:
    """Month starts from the earliest subscription start to the current month, inclusive."""
    starts = [as_utc(s.get("started_at")) for s in subscriptions if s.get("started_at")]
    if not starts:
        return []
    current = month_start(min(starts))
    last = month_start(now)
    months = []
    while current <= last:
        months.append(current)
        current = add_months(current, 1)
    return months


def compute_mrr_snapshots(merchant_id: str, subscriptions: Iterable[Mapping], now: datetime = None) -> List[MrrSnapshot]:
    subscriptions = list(subscriptions)
    now = as_utc(now) or datetime.now(timezone.utc)
    months = month_range(subscriptions, now)
    if not months:
        logger.info(f"[{merchant_id}] No started subscriptions, no MRR snapshots to compute")
        return []

    snapshots: List[MrrSnapshot] = []
    previous: Dict[str, int] = {}

    for month in months:
        month_end = add_months(month, 1)
        current = mrr_by_customer(subscriptions, month, month_end)
        started = started_within(subscriptions, month, month_end)

        new_mrr = expansion = contraction = reactivation = churned_mrr = 0
        new_customers = 0

        for customer_id, amount in current.items():
            if customer_id in previous:
                delta = amount - previous[customer_id]
                if delta > 0:
                    expansion += delta
                elif delta < 0:
                    contraction -= delta
            elif customer_id in started:
                new_customers += 1
                new_mrr += amount
            else:
                reactivation += amount

        churned = [customer_id for customer_id in previous if customer_id not in current]
        for customer_id in churned:
            churned_mrr += previous[customer_id]

        total = sum(current.values())
        snapshots.append(MrrSnapshot(
            merchant_id=merchant_id,
            snapshot_month=month_key(month),
            mrr_cents=total,
            arr_cents=total * 12,
            new_mrr_cents=new_mrr,
            expansion_mrr_cents=expansion,
            contraction_mrr_cents=contraction,
            churned_mrr_cents=churned_mrr,
            reactivation_mrr_cents=reactivation,
            active_customers=len(current),
            new_customers=new_customers,
            churned_customers=len(churned),
        ))

        previous = current

    logger.info(f"[{merchant_id}] Computed {len(snapshots)} MRR snapshots ({snapshots[0].snapshot_month} .. {snapshots[-1].snapshot_month})")
    return snapshots
