import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from core.base_utils import BaseUtils
from core.config import SYNC_LEASE_SECONDS
from core.errors import BillingSyncError, SyncInProgressError
from core.logger import Logger

logger = Logger(__name__)

SyncStep = Tuple[str, Callable[[], Awaitable[None]]]


class BaseSyncHandler(ABC):
    """
    Base handler for a merchant's data synchronization pipeline.

    Steps run strictly in order; the first failing step stops the pipeline.
    Progress is written to the ``sync_progress`` collection after every step,
    and a merchant can only have one pipeline running at a time: an in-process
    lock guards this worker and a Mongo lease guards the other workers.
    """

    service_name: str = "default"
    lease_seconds: int = SYNC_LEASE_SECONDS

    # one lock per (service, merchant) for the whole process
    _locks: Dict[str, asyncio.Lock] = {}

    def __init__(self):
        self.utils = BaseUtils()

    # -------------------------------------------------------------------------
    # Sync Progress Management
    # -------------------------------------------------------------------------

    async def update_sync_progress(
        self,
        merchant_id: str,
        status: str,
        step: str,
        progress: str,
        message: str = "",
    ):
        """Updates or creates the progress document for a merchant and service."""
        await self.utils.mongodb.update_one(
            collection_name="sync_progress",
            query={"merchant_id": merchant_id, "service": self.service_name},
            update_values={
                "merchant_id": merchant_id,
                "service": self.service_name,
                "status": status,
                "step": step,
                "progress": progress,
                "message": message,
                "last_updated": datetime.now(timezone.utc),
            },
            upsert=True,
        )

    # -------------------------------------------------------------------------
    # Per-merchant mutual exclusion
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def merchant_guard(self, merchant_id: str):
        key = f"{self.service_name}:{merchant_id}"
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(f"A {self.service_name} sync is already running for merchant {merchant_id}")

        async with lock:
            owner = uuid4().hex
            acquired = await self.utils.mongodb.acquire_lease(key, owner, self.lease_seconds)
            if not acquired:
                logger.warning(f"Sync lease for {key} is held by another worker")
                raise SyncInProgressError(f"A {self.service_name} sync is already running for merchant {merchant_id}")
            try:
                yield
            finally:
                await self.utils.mongodb.release_lease(key, owner)

    # -------------------------------------------------------------------------
    # Step execution
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_steps(self, merchant_id: str, **kwargs) -> List[SyncStep]:
        """
        Must be implemented by subclasses to return the ordered sync steps.
        Each step is a tuple of (step_name, zero-argument coroutine function).
        """

    async def run_steps(self, merchant_id: str, steps: List[SyncStep]) -> Optional[str]:
        """
        Execute the steps in order. Returns None when every step completed,
        otherwise the error message of the step that failed.
        """
        total_steps = len(steps)
        await self.update_sync_progress(
            merchant_id, "in-progress", "starting", f"0/{total_steps}",
            f"starting {self.service_name} sync ...",
        )

        for index, (step_name, step_fn) in enumerate(steps, start=1):
            await self.update_sync_progress(merchant_id, "in-progress", step_name, f"{index - 1}/{total_steps}")
            try:
                await step_fn()
            except BillingSyncError as e:
                logger.error(f"Error during {self.service_name} sync step '{step_name}' for merchant {merchant_id}: {e}")
                await self.update_sync_progress(
                    merchant_id, "error", step_name, f"{index - 1}/{total_steps}", f"Sync failed: {e}",
                )
                return str(e)

        await self.update_sync_progress(
            merchant_id, "done", "completed", f"{total_steps}/{total_steps}", "All sync steps completed.",
        )
        return None
