import asyncio

from core.logger import Logger
from cron.registry import CronRegistry
from cron.scheduler import start_scheduler

logger = Logger(__name__)

SCHEDULER_INTERVAL_SECONDS = 60


async def init_cron_background() -> asyncio.Task:
    """
    Write the registered job definitions to Mongo and start the scheduler
    loop as a background task of the running event loop.
    """
    await CronRegistry.sync_all_to_db()
    logger.info(f"Cron jobs registered: {CronRegistry.list_registered_jobs()}")
    return asyncio.create_task(start_scheduler(SCHEDULER_INTERVAL_SECONDS))
