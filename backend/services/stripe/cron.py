import asyncio
from typing import List

from core.config import SYNC_SWEEP_CONCURRENCY
from core.errors import BillingSyncError
from core.logger import Logger
from cron.base_cron import BaseCronJob
from cron.registry import cron_job
from .service import StripeIngestionService
from .sync import stripe_handler

logger = Logger(__name__)


async def run_sweep(concurrency: int = SYNC_SWEEP_CONCURRENCY, handler=None, service=None) -> List[dict]:
    """
    Sync every merchant with a valid connection, a few at a time.
    Returns one result entry per merchant; a failing merchant never stops the others.
    """
    handler = handler or stripe_handler
    service = service or handler.service
    connections = await service.list_valid_connections()
    logger.info(f"Stripe sweep starting for {len(connections)} connection(s)")

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def sync_merchant(connection: dict) -> dict:
        merchant_id = connection["merchant_id"]
        async with semaphore:
            try:
                result = await handler.run(merchant_id, enforce_cooldown=False)
            except BillingSyncError as e:
                logger.warning(f"[{merchant_id}] Skipped by sweep: {e}")
                return {"merchant_id": merchant_id, "success": False, "error": str(e)}
            except Exception as e:
                logger.error(f"[{merchant_id}] Sweep sync crashed: {e}")
                return {"merchant_id": merchant_id, "success": False, "error": str(e)}

        return {
            "merchant_id": merchant_id,
            "success": result.success,
            "customers": result.customers,
            "subscriptions": result.subscriptions,
            "events": result.events,
            "error": result.error,
        }

    results = await asyncio.gather(*(sync_merchant(c) for c in connections))
    failed = sum(1 for r in results if not r["success"])
    logger.info(f"Stripe sweep complete: {len(results) - failed} succeeded, {failed} failed")
    return list(results)


@cron_job
class StripeSyncSweepJob(BaseCronJob):
    name = "Stripe Daily Sync Sweep"
    schedule = "1d"
    active = True
    max_runtime_sec = 4 * 3600

    def __init__(self, params: dict = None):
        super().__init__(params)
        self.service = StripeIngestionService()

    async def run(self) -> List[dict]:
        concurrency = int(self.params.get("concurrency", SYNC_SWEEP_CONCURRENCY))
        return await run_sweep(concurrency=concurrency, service=self.service)
