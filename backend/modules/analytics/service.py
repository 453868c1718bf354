from datetime import datetime
from typing import List, Optional

from core.base_service import BaseService
from core.errors import PersistenceError
from core.registry import ServiceRegistry
from core.logger import Logger
from .churn import compute_churn_metrics, compute_overview
from .cohorts import compute_cohort_snapshots
from .models import ChurnMetrics, CohortSnapshot, MrrSnapshot, Overview
from .mrr import compute_mrr_snapshots

logger = Logger(__name__)

MRR_KEY = ("merchant_id", "snapshot_month")
COHORT_KEY = ("merchant_id", "cohort_month", "months_since_start")

SUBSCRIPTION_FIELDS = {
    "_id": 0,
    "stripe_customer_id": 1,
    "status": 1,
    "plan_amount_cents": 1,
    "plan_interval": 1,
    "quantity": 1,
    "started_at": 1,
    "ended_at": 1,
}


class AnalyticsService(BaseService):
    """Runs the snapshot engines over the stored rows and serves their output."""

    name = "analytics"
    indexes = {
        "mrr_snapshots": [(MRR_KEY, True)],
        "cohort_snapshots": [(COHORT_KEY, True)],
    }

    async def _load_subscriptions(self, merchant_id: str) -> List[dict]:
        return await self.mongodb.find_many(
            "synced_subscriptions", {"merchant_id": merchant_id}, projection=SUBSCRIPTION_FIELDS,
        )

    async def compute_mrr_snapshots(self, merchant_id: str, now: datetime = None) -> List[MrrSnapshot]:
        subscriptions = await self._load_subscriptions(merchant_id)
        snapshots = compute_mrr_snapshots(merchant_id, subscriptions, now=now)
        result = await self.mongodb.upsert_many(
            "mrr_snapshots", [s.model_dump() for s in snapshots], MRR_KEY,
        )
        if not result.ok:
            raise PersistenceError(f"MRR snapshot upsert failed: {result.error}")
        # months no longer derivable from the stored subscriptions
        await self.mongodb.delete_many("mrr_snapshots", {
            "merchant_id": merchant_id,
            "snapshot_month": {"$nin": [s.snapshot_month for s in snapshots]},
        })
        return snapshots

    async def compute_cohort_snapshots(self, merchant_id: str, now: datetime = None) -> List[CohortSnapshot]:
        customers = await self.mongodb.find_many(
            "synced_customers",
            {"merchant_id": merchant_id, "first_subscription_at": {"$ne": None}},
            projection={"_id": 0, "stripe_customer_id": 1, "first_subscription_at": 1},
        )
        subscriptions = await self._load_subscriptions(merchant_id)
        snapshots = compute_cohort_snapshots(merchant_id, customers, subscriptions, now=now)
        result = await self.mongodb.upsert_many(
            "cohort_snapshots", [s.model_dump() for s in snapshots], COHORT_KEY,
        )
        if not result.ok:
            raise PersistenceError(f"Cohort snapshot upsert failed: {result.error}")
        await self.mongodb.delete_many("cohort_snapshots", {
            "merchant_id": merchant_id,
            "cohort_month": {"$nin": sorted({s.cohort_month for s in snapshots})},
        })
        return snapshots

    async def get_mrr_snapshots(self, merchant_id: str) -> List[dict]:
        return await self.mongodb.find_many(
            "mrr_snapshots", {"merchant_id": merchant_id},
            sort=[("snapshot_month", 1)], projection={"_id": 0},
        )

    async def get_cohort_snapshots(self, merchant_id: str) -> List[dict]:
        return await self.mongodb.find_many(
            "cohort_snapshots", {"merchant_id": merchant_id},
            sort=[("cohort_month", 1), ("months_since_start", 1)], projection={"_id": 0},
        )

    async def count_at_risk(self, merchant_id: str) -> int:
        """Active subscriptions set to cancel at the end of the current period."""
        return await self.mongodb.count(
            "synced_subscriptions",
            {"merchant_id": merchant_id, "status": "active", "cancel_at_period_end": True},
        )

    async def get_churn_metrics(self, merchant_id: str) -> ChurnMetrics:
        snapshots = await self.get_mrr_snapshots(merchant_id)
        at_risk = await self.count_at_risk(merchant_id)
        return compute_churn_metrics(snapshots, at_risk_customers=at_risk)

    async def get_overview(self, merchant_id: str) -> Overview:
        recent = await self.mongodb.find_many(
            "mrr_snapshots", {"merchant_id": merchant_id},
            sort=[("snapshot_month", -1)], projection={"_id": 0}, limit=2,
        )
        latest: Optional[dict] = recent[0] if recent else None
        previous: Optional[dict] = recent[1] if len(recent) > 1 else None
        total_customers = await self.mongodb.count("synced_customers", {"merchant_id": merchant_id})
        at_risk = await self.count_at_risk(merchant_id)
        return compute_overview(latest, previous, total_customers=total_customers, at_risk_customers=at_risk)


ServiceRegistry.register_service("analytics", AnalyticsService())
