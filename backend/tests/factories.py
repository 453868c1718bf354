"""Scripted Stripe data used across the test modules."""

from datetime import datetime, timezone

from services.stripe.client import Page


class FakeStripeClient:
    """
    Serves scripted pages per resource kind and records the filters it was asked for.
    `errors` maps a kind to the exception raised when that kind is listed.
    """

    def __init__(self, pages=None, errors=None, account=None):
        self.pages = pages or {}
        self.errors = errors or {}
        self.account = account or {"settings": {"dashboard": {"display_name": "Acme"}}}
        self.calls = []

    async def iter_pages(self, kind, **filters):
        self.calls.append((kind, filters))
        if kind in self.errors:
            raise self.errors[kind]
        for data in self.pages.get(kind, []):
            yield Page(data=data, has_more=False)

    async def retrieve_account(self):
        if "account" in self.errors:
            raise self.errors["account"]
        return self.account

    async def list_customers(self, starting_after=None, created_gte=None):
        if "customers" in self.errors:
            raise self.errors["customers"]
        pages = self.pages.get("customers") or [[]]
        return Page(data=pages[0][:1])


def ts(year: int, month: int, day: int = 1) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def utc(year: int, month: int, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def stripe_subscription(sub_id, customer_id, amount, interval="month", status="active", start=None, ended=None, **extra):
    record = {
        "id": sub_id,
        "customer": customer_id,
        "status": status,
        "start_date": start,
        "ended_at": ended,
        "items": {"data": [{
            "quantity": extra.pop("quantity", 1),
            "price": {
                "id": f"price_{sub_id}",
                "unit_amount": amount,
                "currency": "usd",
                "recurring": {"interval": interval},
                "product": {"id": f"prod_{sub_id}", "name": extra.pop("plan_name", "Pro")},
            },
        }]},
    }
    record.update(extra)
    return record


