from typing import Mapping, Optional, Sequence

from .models import ChurnMetrics, ChurnTrendPoint, CurrentChurn, Overview
from .utils import round_rate


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def _percent(value: float) -> float:
    return round_rate(value * 100, 2)


def customer_churn_rate(snapshot: Mapping) -> float:
    churned = snapshot.get("churned_customers", 0)
    return _percent(_ratio(churned, snapshot.get("active_customers", 0) + churned))


def revenue_churn_rate(snapshot: Mapping) -> float:
    churned = snapshot.get("churned_mrr_cents", 0)
    return _percent(_ratio(churned, snapshot.get("mrr_cents", 0) + churned))


def net_revenue_churn_rate(snapshot: Mapping) -> float:
    """Negative when expansion outweighs churn."""
    churned = snapshot.get("churned_mrr_cents", 0)
    net = churned - snapshot.get("expansion_mrr_cents", 0)
    return _percent(_ratio(net, snapshot.get("mrr_cents", 0) + churned))


def compute_churn_metrics(snapshots: Sequence[Mapping], at_risk_customers: int = 0) -> ChurnMetrics:
    """Churn rates of the latest month plus the same rates for every month, oldest first."""
    ordered = sorted(snapshots, key=lambda s: s["snapshot_month"])
    trend = [
        ChurnTrendPoint(
            month=snap["snapshot_month"],
            customer_churn_rate=customer_churn_rate(snap),
            revenue_churn_rate=revenue_churn_rate(snap),
            net_revenue_churn_rate=net_revenue_churn_rate(snap),
        )
        for snap in ordered
    ]
    if not ordered:
        return ChurnMetrics(current_month=CurrentChurn(at_risk_customers=at_risk_customers), trend=trend)

    latest = trend[-1]
    return ChurnMetrics(
        current_month=CurrentChurn(
            customer_churn_rate=latest.customer_churn_rate,
            revenue_churn_rate=latest.revenue_churn_rate,
            net_revenue_churn_rate=latest.net_revenue_churn_rate,
            churned_customers=ordered[-1].get("churned_customers", 0),
            at_risk_customers=at_risk_customers,
        ),
        trend=trend,
    )


def compute_overview(
    latest: Optional[Mapping],
    previous: Optional[Mapping],
    total_customers: int = 0,
    at_risk_customers: int = 0,
) -> Overview:
    latest = latest or {}
    previous = previous or {}

    mrr = latest.get("mrr_cents", 0)
    prev_mrr = previous.get("mrr_cents", 0)
    active = latest.get("active_customers", 0)
    prev_active = previous.get("active_customers", 0)

    churn_rate = customer_churn_rate(latest) if latest else 0.0
    arpu = _ratio(mrr, active)
    clv = arpu / (churn_rate / 100) if churn_rate > 0 else 0.0

    return Overview(
        mrr=mrr,
        arr=mrr * 12,
        mrr_growth=_percent(_ratio(mrr - prev_mrr, prev_mrr)),
        active_customers=active,
        active_customers_growth=_percent(_ratio(active - prev_active, prev_active)),
        total_customers=total_customers,
        customer_churn_rate=churn_rate,
        arpu=round(arpu),
        clv=round(clv),
        at_risk_customers=at_risk_customers,
        new_mrr=latest.get("new_mrr_cents", 0),
        expansion_mrr=latest.get("expansion_mrr_cents", 0),
        churned_mrr=latest.get("churned_mrr_cents", 0),
    )
