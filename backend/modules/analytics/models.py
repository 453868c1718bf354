from pydantic import BaseModel, Field
from typing import List
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MrrSnapshot(BaseModel):
    merchant_id: str
    snapshot_month: str
    mrr_cents: int = Field(default=0)
    arr_cents: int = Field(default=0)
    new_mrr_cents: int = Field(default=0)
    expansion_mrr_cents: int = Field(default=0)
    contraction_mrr_cents: int = Field(default=0)
    churned_mrr_cents: int = Field(default=0)
    reactivation_mrr_cents: int = Field(default=0)
    active_customers: int = Field(default=0)
    new_customers: int = Field(default=0)
    churned_customers: int = Field(default=0)
    computed_at: datetime = Field(default_factory=utcnow)


class CohortSnapshot(BaseModel):
    merchant_id: str
    cohort_month: str
    months_since_start: int
    cohort_size: int
    retained_count: int
    retention_rate: float = Field(ge=0, le=1)
    mrr_cents: int = Field(default=0)
    computed_at: datetime = Field(default_factory=utcnow)


class ChurnTrendPoint(BaseModel):
    month: str
    customer_churn_rate: float
    revenue_churn_rate: float
    net_revenue_churn_rate: float


class CurrentChurn(BaseModel):
    customer_churn_rate: float = 0.0
    revenue_churn_rate: float = 0.0
    net_revenue_churn_rate: float = 0.0
    churned_customers: int = 0
    at_risk_customers: int = 0


class ChurnMetrics(BaseModel):
    current_month: CurrentChurn = Field(default_factory=CurrentChurn)
    trend: List[ChurnTrendPoint] = Field(default_factory=list)


class Overview(BaseModel):
    mrr: int = 0
    arr: int = 0
    mrr_growth: float = 0.0
    active_customers: int = 0
    active_customers_growth: float = 0.0
    total_customers: int = 0
    customer_churn_rate: float = 0.0
    arpu: int = 0
    clv: int = 0
    at_risk_customers: int = 0
    new_mrr: int = 0
    expansion_mrr: int = 0
    churned_mrr: int = 0
