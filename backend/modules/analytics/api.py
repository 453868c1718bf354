from core.base_api import BaseAPI, get
from core.base_utils import BaseUtils
from core.registry import ServiceRegistry
from .service import AnalyticsService


class AnalyticsAPI(BaseAPI):
    service: AnalyticsService
    utils: BaseUtils

    @get("/{merchant_id}/mrr")
    async def get_mrr(self, merchant_id: str):
        snapshots = await self.service.get_mrr_snapshots(merchant_id)
        return {"snapshots": self.utils.sanitize_mongo_doc(snapshots)}

    @get("/{merchant_id}/cohorts")
    async def get_cohorts(self, merchant_id: str):
        cohorts = await self.service.get_cohort_snapshots(merchant_id)
        return {"cohorts": self.utils.sanitize_mongo_doc(cohorts)}

    @get("/{merchant_id}/churn")
    async def get_churn(self, merchant_id: str):
        metrics = await self.service.get_churn_metrics(merchant_id)
        return metrics.model_dump()

    @get("/{merchant_id}/overview")
    async def get_overview(self, merchant_id: str):
        overview = await self.service.get_overview(merchant_id)
        return overview.model_dump()


ServiceRegistry.register_api("analytics", AnalyticsAPI("/analytics").router)
