from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


SubscriptionStatus = Literal[
    "active", "trialing", "past_due", "canceled", "unpaid",
    "incomplete", "incomplete_expired", "paused",
]
SyncStatus = Literal["pending", "running", "completed", "failed"]


class SyncedCustomer(BaseModel):
    merchant_id: str
    stripe_customer_id: str
    email: Optional[str] = Field(default=None)
    name: Optional[str] = Field(default=None)
    created_at_stripe: Optional[datetime] = Field(default=None)
    currency: str = Field(default="usd")
    metadata: dict = Field(default_factory=dict)
    synced_at: datetime = Field(default_factory=utcnow)
    # roll-up fields, written only by the ingestion service
    current_mrr_cents: int = Field(default=0)
    subscription_status: Optional[str] = Field(default=None)
    first_subscription_at: Optional[datetime] = Field(default=None)
    churned_at: Optional[datetime] = Field(default=None)
    lifetime_value_cents: int = Field(default=0)
    plan_name: Optional[str] = Field(default=None)


class SyncedSubscription(BaseModel):
    merchant_id: str
    stripe_subscription_id: str
    stripe_customer_id: Optional[str] = Field(default=None)
    status: str = Field(default="incomplete")
    plan_id: Optional[str] = Field(default=None)
    plan_name: Optional[str] = Field(default=None)
    plan_amount_cents: int = Field(default=0)
    plan_interval: Literal["month", "year"] = Field(default="month")
    plan_currency: str = Field(default="usd")
    quantity: int = Field(default=1)
    started_at: Optional[datetime] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None)
    canceled_at: Optional[datetime] = Field(default=None)
    trial_start: Optional[datetime] = Field(default=None)
    trial_end: Optional[datetime] = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)
    metadata: dict = Field(default_factory=dict)
    synced_at: datetime = Field(default_factory=utcnow)


class SyncedEvent(BaseModel):
    merchant_id: str
    stripe_event_id: str
    event_type: Optional[str] = Field(default=None)
    stripe_customer_id: Optional[str] = Field(default=None)
    event_data: dict = Field(default_factory=dict)
    occurred_at: Optional[datetime] = Field(default=None)
    synced_at: datetime = Field(default_factory=utcnow)


class StripeConnection(BaseModel):
    merchant_id: str
    stripe_api_key_encrypted: Optional[str] = Field(default=None)
    is_valid: bool = Field(default=True)
    last_sync_at: Optional[datetime] = Field(default=None)
    last_sync_status: SyncStatus = Field(default="pending")
    last_sync_error: Optional[str] = Field(default=None)
    customer_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncResult(BaseModel):
    customers: int = 0
    subscriptions: int = 0
    events: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class ValidateRequest(BaseModel):
    api_key: str


class SyncRequest(BaseModel):
    merchant_id: str
    api_key: Optional[str] = Field(default=None)
    full_sync: bool = Field(default=False)
