from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.base_service import BaseService
from core.base_utils import BaseUtils
from core.config import STRIPE_REQUESTS_PER_SECOND
from core.errors import BillingSyncError, CredentialError
from core.registry import ServiceRegistry
from core.logger import Logger
from modules.analytics.utils import as_utc, normalized_mrr
from .client import StripeBillingClient, read
from .models import StripeConnection, SyncResult
from .rate_limiter import Throttle
from .transforms import transform_customer, transform_event, transform_subscription

logger = Logger(__name__)

PAYING_STATUSES = ("active", "trialing")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Resource:
    """How one Stripe list endpoint lands in Mongo."""

    def __init__(self, kind: str, collection: str, key_field: str, transform: Callable, insert_only: bool = False):
        self.kind = kind
        self.collection = collection
        self.key = ("merchant_id", key_field)
        self.transform = transform
        # events are an audit trail: stored once, never rewritten
        self.insert_only = insert_only


CUSTOMERS = Resource("customers", "synced_customers", "stripe_customer_id", transform_customer)
SUBSCRIPTIONS = Resource("subscriptions", "synced_subscriptions", "stripe_subscription_id", transform_subscription)
EVENTS = Resource("events", "synced_events", "stripe_event_id", transform_event, insert_only=True)


def compute_customer_rollups(subscriptions: Iterable[Mapping]) -> Dict[str, dict]:
    """
    Per-customer computed fields derived from every stored subscription:
    current MRR, status, first subscription, churn date, lifetime value, plan.
    """
    by_customer: Dict[str, List[Mapping]] = {}
    for sub in subscriptions:
        customer_id = sub.get("stripe_customer_id")
        if customer_id:
            by_customer.setdefault(customer_id, []).append(sub)

    rollups = {}
    for customer_id, subs in by_customer.items():
        subs = sorted(subs, key=lambda s: (s.get("started_at") is None, as_utc(s.get("started_at")) or EPOCH))
        paying = [s for s in subs if s.get("status") in PAYING_STATUSES]

        started = [as_utc(s["started_at"]) for s in subs if s.get("started_at")]
        ended = [as_utc(s["ended_at"]) for s in subs if s.get("ended_at")]

        if paying:
            status = "active" if any(s.get("status") == "active" for s in paying) else "trialing"
            plan_name = max(paying, key=normalized_mrr).get("plan_name")
            churned_at = None
        else:
            status = subs[-1].get("status") or "canceled"
            plan_name = None
            churned_at = max(ended) if ended else None

        rollups[customer_id] = {
            "current_mrr_cents": sum(normalized_mrr(s) for s in paying),
            "subscription_status": status,
            "first_subscription_at": min(started) if started else None,
            "churned_at": churned_at,
            "lifetime_value_cents": sum(
                int(s.get("plan_amount_cents") or 0) * int(s.get("quantity") or 1) for s in subs
            ),
            "plan_name": plan_name,
        }
    return rollups


class StripeIngestionService(BaseService):
    name = "stripe"
    indexes = {
        "stripe_connections": [(("merchant_id",), True), (("is_valid",), False)],
        "synced_customers": [(CUSTOMERS.key, True)],
        "synced_subscriptions": [(SUBSCRIPTIONS.key, True), (("merchant_id", "status"), False)],
        "synced_events": [(EVENTS.key, True)],
        "sync_progress": [(("merchant_id", "service"), True)],
    }

    def __init__(self):
        super().__init__()
        self.utils = BaseUtils()

    def create_client(self, api_key: str, page_size: int = None) -> StripeBillingClient:
        # each client gets its own throttle
        throttle = Throttle(STRIPE_REQUESTS_PER_SECOND)
        if page_size:
            return StripeBillingClient(api_key, throttle=throttle, page_size=page_size)
        return StripeBillingClient(api_key, throttle=throttle)

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    async def get_connection(self, merchant_id: str) -> Optional[dict]:
        return await self.mongodb.find_one("stripe_connections", {"merchant_id": merchant_id})

    async def save_credential(self, merchant_id: str, api_key: str) -> bool:
        """Store (or rotate) the merchant's API key. Returns True when a new pending connection was created."""
        now = self.utcnow()
        existing = await self.get_connection(merchant_id)
        if existing:
            await self.mongodb.update_one(
                "stripe_connections",
                {"merchant_id": merchant_id},
                {
                    "stripe_api_key_encrypted": self.utils.encode_secret(api_key),
                    "is_valid": True,
                    "updated_at": now,
                },
            )
            logger.info(f"[{merchant_id}] Stripe credential rotated")
            return False
        connection = StripeConnection(
            merchant_id=merchant_id,
            stripe_api_key_encrypted=self.utils.encode_secret(api_key),
            created_at=now,
            updated_at=now,
        )
        await self.mongodb.update_one(
            "stripe_connections", {"merchant_id": merchant_id}, connection.model_dump(), upsert=True,
        )
        logger.info(f"[{merchant_id}] Stripe connection created")
        return True

    def decode_credential(self, connection: Optional[dict]) -> str:
        token = (connection or {}).get("stripe_api_key_encrypted")
        return self.utils.decode_secret(token) if token else ""

    async def get_credential(self, merchant_id: str) -> str:
        return self.decode_credential(await self.get_connection(merchant_id))

    async def list_valid_connections(self) -> List[dict]:
        return await self.mongodb.find_many("stripe_connections", {"is_valid": True})

    async def _update_connection(self, merchant_id: str, **values):
        values["updated_at"] = self.utcnow()
        await self.mongodb.update_one("stripe_connections", {"merchant_id": merchant_id}, values)

    async def mark_running(self, merchant_id: str):
        await self._update_connection(merchant_id, last_sync_status="running", last_sync_error=None)

    async def mark_completed(self, merchant_id: str, synced_at: datetime, customer_count: int):
        await self._update_connection(
            merchant_id,
            last_sync_status="completed",
            last_sync_at=synced_at,
            customer_count=customer_count,
            last_sync_error=None,
        )

    async def mark_failed(self, merchant_id: str, error: str):
        await self._update_connection(merchant_id, last_sync_status="failed", last_sync_error=error)

    # -------------------------------------------------------------------------
    # Credential validation
    # -------------------------------------------------------------------------

    async def validate_credential(self, api_key: str, client: StripeBillingClient = None) -> Dict[str, Any]:
        """Read-only pre-flight: retrieve the account and look for a single customer."""
        try:
            client = client or self.create_client(api_key, page_size=1)
            account = await client.retrieve_account()
            customers = await client.list_customers()
        except BillingSyncError as e:
            logger.warning(f"Stripe credential validation failed: {e}")
            return {"valid": False, "error": str(e)}

        account_name = (
            read(read(read(account, "settings"), "dashboard"), "display_name")
            or read(read(account, "business_profile"), "name")
            or "Stripe Account"
        )
        return {"valid": True, "account_name": account_name, "has_customers": len(customers.data) > 0}

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def _drain(
        self,
        client: StripeBillingClient,
        merchant_id: str,
        resource: Resource,
        result: SyncResult,
        **filters,
    ) -> Optional[str]:
        """
        Page through one resource, writing each page as one batch.
        Returns None once drained, or the error that stopped it.
        """
        try:
            async for page in client.iter_pages(resource.kind, **filters):
                synced_at = self.utcnow()
                rows = []
                for record in page.data:
                    if resource is CUSTOMERS and read(record, "deleted"):
                        continue
                    document = resource.transform(merchant_id, record, synced_at)
                    if document is not None:
                        rows.append(document.model_dump())

                write = self.mongodb.insert_missing if resource.insert_only else self.mongodb.upsert_many
                outcome = await write(resource.collection, rows, resource.key)
                if not outcome.ok:
                    return f"{resource.kind.capitalize()} upsert failed: {outcome.error}"
                setattr(result, resource.kind, getattr(result, resource.kind) + outcome.count)
        except BillingSyncError as e:
            return str(e)

        logger.info(f"[{merchant_id}] Synced {getattr(result, resource.kind)} {resource.kind}")
        return None

    async def update_customer_rollups(self, merchant_id: str) -> Optional[str]:
        subscriptions = await self.mongodb.find_many("synced_subscriptions", {"merchant_id": merchant_id})
        rollups = compute_customer_rollups(subscriptions)
        outcome = await self.mongodb.set_many(
            "synced_customers",
            [
                ({"merchant_id": merchant_id, "stripe_customer_id": customer_id}, fields)
                for customer_id, fields in rollups.items()
            ],
        )
        if not outcome.ok:
            return f"Customer roll-up update failed: {outcome.error}"
        logger.info(f"[{merchant_id}] Updated roll-up fields for {len(rollups)} customers")
        return None

    async def sync(
        self,
        merchant_id: str,
        credential: str,
        full_sync: bool = False,
        last_sync_at: Optional[datetime] = None,
        client: StripeBillingClient = None,
    ) -> SyncResult:
        """
        Pull customers, subscriptions and events (in that order) into Mongo,
        then refresh the per-customer roll-ups. The first failure stops the
        sync, marks the connection failed and is returned on the result
        together with the counts gathered so far.
        """
        result = SyncResult()
        await self.mark_running(merchant_id)

        created_gte = as_utc(last_sync_at) if (not full_sync and last_sync_at) else None
        mode = "full" if created_gte is None else f"incremental since {created_gte.isoformat()}"
        logger.info(f"[{merchant_id}] Starting Stripe sync ({mode})")

        try:
            client = client or self.create_client(credential)
        except CredentialError as e:
            result.error = str(e)
            await self.mark_failed(merchant_id, result.error)
            return result

        plan = [
            (CUSTOMERS, {"created_gte": created_gte}),
            (SUBSCRIPTIONS, {}),
            (EVENTS, {"created_gte": created_gte}),
        ]
        for resource, filters in plan:
            error = await self._drain(client, merchant_id, resource, result, **filters)
            if error:
                return await self._fail(merchant_id, result, error)

        error = await self.update_customer_rollups(merchant_id)
        if error:
            return await self._fail(merchant_id, result, error)

        await self.mark_completed(merchant_id, self.utcnow(), result.customers)
        logger.info(
            f"[{merchant_id}] Stripe sync completed: {result.customers} customers, "
            f"{result.subscriptions} subscriptions, {result.events} events"
        )
        return result

    async def _fail(self, merchant_id: str, result: SyncResult, error: str) -> SyncResult:
        logger.error(f"[{merchant_id}] Stripe sync failed: {error}")
        result.error = error
        await self.mark_failed(merchant_id, error)
        return result


ServiceRegistry.register_service("stripe", StripeIngestionService())
