from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from core.base_handler import BaseSyncHandler
from core.config import SYNC_COOLDOWN_SECONDS
from core.errors import BillingSyncError, NotConnectedError, SyncCooldownError
from core.logger import Logger
from modules.analytics.service import AnalyticsService
from modules.analytics.utils import as_utc
from .models import SyncResult
from .service import StripeIngestionService

logger = Logger(__name__)


class StripeSyncHandler(BaseSyncHandler):
    """
    Runs a merchant's Stripe sync followed by the analytics recomputation.

    The MRR and cohort engines only run once ingestion completed; a failed
    ingestion leaves the stored snapshots as they were.
    """

    service_name = "stripe"
    cooldown = timedelta(seconds=SYNC_COOLDOWN_SECONDS)

    def __init__(self):
        super().__init__()
        self.service = StripeIngestionService()
        self.analytics = AnalyticsService()

    def get_steps(
        self,
        merchant_id: str,
        credential: str = "",
        full_sync: bool = False,
        last_sync_at: Optional[datetime] = None,
        result: SyncResult = None,
    ) -> List[Tuple[str, Callable]]:
        result = result if result is not None else SyncResult()

        async def ingest():
            outcome = await self.service.sync(merchant_id, credential, full_sync=full_sync, last_sync_at=last_sync_at)
            result.customers = outcome.customers
            result.subscriptions = outcome.subscriptions
            result.events = outcome.events
            result.error = outcome.error
            if outcome.error:
                raise BillingSyncError(outcome.error)

        async def mrr_snapshots():
            await self.analytics.compute_mrr_snapshots(merchant_id)

        async def cohort_snapshots():
            await self.analytics.compute_cohort_snapshots(merchant_id)

        return [
            ("ingest", ingest),
            ("mrr_snapshots", mrr_snapshots),
            ("cohort_snapshots", cohort_snapshots),
        ]

    def check_cooldown(self, merchant_id: str, last_sync_at: Optional[datetime]):
        if last_sync_at is None:
            return
        remaining = last_sync_at + self.cooldown - self.service.utcnow()
        if remaining.total_seconds() > 0:
            raise SyncCooldownError(
                f"Sync cooldown active for merchant {merchant_id}. "
                f"Try again in {int(remaining.total_seconds() // 60) + 1} minutes."
            )

    async def run(
        self,
        merchant_id: str,
        api_key: str = None,
        full_sync: bool = False,
        enforce_cooldown: bool = True,
    ) -> SyncResult:
        """
        Sync one merchant end to end.

        Raises NotConnectedError, SyncCooldownError or SyncInProgressError
        before anything is fetched; failures during the run are returned on
        the result instead.
        """
        if api_key:
            await self.service.save_credential(merchant_id, api_key)

        connection = await self.service.get_connection(merchant_id) or {}
        last_sync_at = as_utc(connection.get("last_sync_at"))

        if enforce_cooldown and not full_sync:
            self.check_cooldown(merchant_id, last_sync_at)

        credential = self.service.decode_credential(connection)
        if not credential:
            raise NotConnectedError(f"No Stripe connection found for merchant {merchant_id}")

        # nothing to be incremental against yet
        if last_sync_at is None:
            full_sync = True

        result = SyncResult()
        async with self.merchant_guard(merchant_id):
            steps = self.get_steps(
                merchant_id,
                credential=credential,
                full_sync=full_sync,
                last_sync_at=last_sync_at,
                result=result,
            )
            error = await self.run_steps(merchant_id, steps)

        if error and result.error is None:
            # ingestion completed but the analytics recomputation did not
            logger.error(f"[{merchant_id}] Analytics recomputation failed after sync: {error}")
            result.error = error
        return result


stripe_handler = StripeSyncHandler()
