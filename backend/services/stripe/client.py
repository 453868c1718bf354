import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import stripe

from core.config import STRIPE_EVENTS_TO_SYNC, STRIPE_PAGE_SIZE, STRIPE_REQUESTS_PER_SECOND
from core.errors import CredentialError, TransportError
from core.logger import Logger
from .rate_limiter import Throttle

logger = Logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class Page:
    data: List[dict] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None


def as_dict(record: Any) -> dict:
    """StripeObjects are dict-like; anything else is converted through to_dict()."""
    if isinstance(record, dict):
        return record
    to_dict = getattr(record, "to_dict", None)
    return to_dict() if callable(to_dict) else {}


def read(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def to_unix(value: datetime) -> int:
    return int(value.timestamp())


class StripeBillingClient:
    """
    Paginated list access to one Stripe account.

    The API key travels with every request instead of living on the module,
    and every request is gated by this client's Throttle.
    """

    def __init__(self, api_key: str, throttle: Throttle = None, page_size: int = STRIPE_PAGE_SIZE):
        if not api_key:
            raise CredentialError("No Stripe API key provided")
        self.api_key = api_key
        self.throttle = throttle or Throttle(STRIPE_REQUESTS_PER_SECOND)
        self.page_size = max(1, min(int(page_size), MAX_PAGE_SIZE))

    async def _call(self, fn, **params):
        await self.throttle.wait()
        try:
            return await asyncio.to_thread(fn, api_key=self.api_key, **params)
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            raise CredentialError(e.user_message or str(e)) from e
        except stripe.StripeError as e:
            raise TransportError(e.user_message or str(e)) from e

    async def _list(self, fn, starting_after: Optional[str] = None, **params) -> Page:
        params["limit"] = self.page_size
        if starting_after:
            params["starting_after"] = starting_after
        result = await self._call(fn, **params)
        data = [as_dict(record) for record in (read(result, "data") or [])]
        has_more = bool(read(result, "has_more")) and bool(data)
        next_cursor = data[-1].get("id") if has_more else None
        return Page(data=data, has_more=has_more, next_cursor=next_cursor)

    async def list_customers(self, starting_after: Optional[str] = None, created_gte: Optional[datetime] = None) -> Page:
        params: Dict[str, Any] = {}
        if created_gte:
            params["created"] = {"gte": to_unix(created_gte)}
        return await self._list(stripe.Customer.list, starting_after, **params)

    async def list_subscriptions(self, starting_after: Optional[str] = None) -> Page:
        # creation-time filters are unreliable for subscriptions, always reconcile the full set
        return await self._list(
            stripe.Subscription.list,
            starting_after,
            status="all",
            expand=["data.items.data.price.product"],
        )

    async def list_events(
        self,
        starting_after: Optional[str] = None,
        created_gte: Optional[datetime] = None,
        types: Optional[List[str]] = None,
    ) -> Page:
        params: Dict[str, Any] = {"types": list(types or STRIPE_EVENTS_TO_SYNC)}
        if created_gte:
            params["created"] = {"gte": to_unix(created_gte)}
        return await self._list(stripe.Event.list, starting_after, **params)

    async def iter_pages(self, kind: str, **filters) -> AsyncIterator[Page]:
        """Yield every page of `kind` (customers, subscriptions, events) in order."""
        list_page = getattr(self, f"list_{kind}")
        cursor = None
        while True:
            page = await list_page(starting_after=cursor, **filters)
            yield page
            if not page.has_more:
                break
            cursor = page.next_cursor

    async def retrieve_account(self) -> dict:
        return as_dict(await self._call(stripe.Account.retrieve))
