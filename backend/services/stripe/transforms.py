"""
Record transformer: one Stripe record in, one canonical document out.

Every accessor tolerates missing or oddly-typed fields so a malformed record
degrades to defaults instead of failing the page it arrived in. Only a record
without its own id is unusable; callers receive None for it.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from core.logger import Logger
from .client import read
from .models import SyncedCustomer, SyncedEvent, SyncedSubscription

logger = Logger(__name__)


def to_datetime(value: Any) -> Optional[datetime]:
    """Unix seconds -> tz-aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def to_cents(value: Any, fallback_decimal: Any = None) -> int:
    """Integer minor units; the decimal-string variant is used when the integer one is absent."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raw = value if value is not None else fallback_decimal
    if raw is None or isinstance(raw, bool):
        return 0
    try:
        return int(Decimal(str(raw)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return 0


def to_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def to_dict(value: Any) -> dict:
    if isinstance(value, dict):
        return dict(value)
    return {}


def ref_id(value: Any) -> Optional[str]:
    """A Stripe reference is either an id string or an expanded object carrying one."""
    if isinstance(value, str):
        return value or None
    if value is None:
        return None
    return to_str(read(value, "id"))


def transform_customer(merchant_id: str, customer: Any, synced_at: datetime = None) -> Optional[SyncedCustomer]:
    customer_id = to_str(read(customer, "id"))
    if not customer_id:
        logger.warning(f"[{merchant_id}] Skipping customer record without id")
        return None
    return SyncedCustomer(
        merchant_id=merchant_id,
        stripe_customer_id=customer_id,
        email=to_str(read(customer, "email")),
        name=to_str(read(customer, "name")),
        created_at_stripe=to_datetime(read(customer, "created")),
        currency=to_str(read(customer, "currency")) or "usd",
        metadata=to_dict(read(customer, "metadata")),
        synced_at=synced_at or datetime.now(timezone.utc),
    )


def _first_item(subscription: Any) -> Any:
    items = read(read(subscription, "items"), "data") or []
    try:
        return items[0]
    except (IndexError, KeyError, TypeError):
        return None


def _plan_name(product: Any) -> Optional[str]:
    if isinstance(product, str):
        return product or None
    if product is None:
        return None
    return to_str(read(product, "name")) or to_str(read(product, "id"))


def _quantity(value: Any) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return quantity if quantity > 0 else 1


def transform_subscription(merchant_id: str, subscription: Any, synced_at: datetime = None) -> Optional[SyncedSubscription]:
    subscription_id = to_str(read(subscription, "id"))
    if not subscription_id:
        logger.warning(f"[{merchant_id}] Skipping subscription record without id")
        return None

    item = _first_item(subscription)
    price = read(item, "price")
    interval = "year" if read(read(price, "recurring"), "interval") == "year" else "month"

    return SyncedSubscription(
        merchant_id=merchant_id,
        stripe_subscription_id=subscription_id,
        stripe_customer_id=ref_id(read(subscription, "customer")),
        status=to_str(read(subscription, "status")) or "incomplete",
        plan_id=ref_id(price),
        plan_name=_plan_name(read(price, "product")),
        plan_amount_cents=to_cents(read(price, "unit_amount"), read(price, "unit_amount_decimal")),
        plan_interval=interval,
        plan_currency=to_str(read(price, "currency")) or "usd",
        quantity=_quantity(read(item, "quantity")),
        started_at=to_datetime(read(subscription, "start_date")),
        ended_at=to_datetime(read(subscription, "ended_at")),
        canceled_at=to_datetime(read(subscription, "canceled_at")),
        trial_start=to_datetime(read(subscription, "trial_start")),
        trial_end=to_datetime(read(subscription, "trial_end")),
        cancel_at_period_end=bool(read(subscription, "cancel_at_period_end")),
        metadata=to_dict(read(subscription, "metadata")),
        synced_at=synced_at or datetime.now(timezone.utc),
    )


def transform_event(merchant_id: str, event: Any, synced_at: datetime = None) -> Optional[SyncedEvent]:
    event_id = to_str(read(event, "id"))
    if not event_id:
        logger.warning(f"[{merchant_id}] Skipping event record without id")
        return None

    data_object = read(read(event, "data"), "object")
    customer_id = ref_id(read(data_object, "customer")) if data_object is not None else None
    if not customer_id and data_object is not None:
        customer_id = to_str(read(data_object, "id"))

    return SyncedEvent(
        merchant_id=merchant_id,
        stripe_event_id=event_id,
        event_type=to_str(read(event, "type")),
        stripe_customer_id=customer_id,
        event_data=to_dict(data_object),
        occurred_at=to_datetime(read(event, "created")),
        synced_at=synced_at or datetime.now(timezone.utc),
    )
