from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping

from core.config import MAX_COHORT_MONTHS
from core.logger import Logger
from .models import CohortSnapshot
from .utils import (
    add_months,
    as_utc,
    counts_toward_mrr,
    month_key,
    month_start,
    months_between,
    normalized_mrr,
    overlaps,
    round_rate,
)

logger = Logger(__name__)


def group_cohorts(customers: Iterable[Mapping]) -> Dict[datetime, List[str]]:
    """Customer ids keyed by the month of their first subscription."""
    cohorts: Dict[datetime, List[str]] = defaultdict(list)
    for customer in customers:
        first = customer.get("first_subscription_at")
        customer_id = customer.get("stripe_customer_id")
        if first is None or not customer_id:
            continue
        cohorts[month_start(first)].append(customer_id)
    return cohorts


def compute_cohort_snapshots(
    merchant_id: str,
    customers: Iterable[Mapping],
    subscriptions: Iterable[Mapping],
    now: datetime = None,
    max_months: int = MAX_COHORT_MONTHS,
) -> List[CohortSnapshot]:
    now_month = month_start(as_utc(now) or datetime.now(timezone.utc))

    subs_by_customer: Dict[str, List[Mapping]] = defaultdict(list)
    for sub in subscriptions:
        if sub.get("stripe_customer_id"):
            subs_by_customer[sub["stripe_customer_id"]].append(sub)

    snapshots: List[CohortSnapshot] = []
    cohorts = group_cohorts(customers)

    for cohort_month in sorted(cohorts):
        members = cohorts[cohort_month]
        cohort_size = len(members)
        last_offset = min(months_between(cohort_month, now_month), max_months)

        for offset in range(0, last_offset + 1):
            window_start = add_months(cohort_month, offset)
            window_end = add_months(window_start, 1)

            retained = 0
            cohort_mrr = 0
            for customer_id in members:
                running = [s for s in subs_by_customer.get(customer_id, []) if overlaps(s, window_start, window_end)]
                if not running:
                    continue
                retained += 1
                cohort_mrr += sum(normalized_mrr(s) for s in running if counts_toward_mrr(s))

            snapshots.append(CohortSnapshot(
                merchant_id=merchant_id,
                cohort_month=month_key(cohort_month),
                months_since_start=offset,
                cohort_size=cohort_size,
                retained_count=retained,
                retention_rate=round_rate(retained / cohort_size, 4) if cohort_size else 0.0,
                mrr_cents=cohort_mrr,
            ))

    logger.info(f"[{merchant_id}] Computed {len(snapshots)} cohort cells across {len(cohorts)} cohorts")
    return snapshots
