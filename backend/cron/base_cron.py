from abc import ABC, abstractmethod
from typing import Any

from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)


class BaseCronJob(ABC, BaseDatabase):
    """
    Base class for scheduled jobs.
    Decorate subclasses with @cron_job so the scheduler can find them.
    """

    name: str = None          # shown in logs and in the cron_jobs collection
    schedule: str = "1d"      # "<n><unit>", units m h d w M y
    active: bool = True
    max_runtime_sec: int = 3600

    def __init__(self, params: dict = None):
        self.params = params or {}

    @classmethod
    def job_id(cls) -> str:
        return f"{cls.__module__}.{cls.__name__}"

    @property
    def display_name(self) -> str:
        return self.name or self.__class__.__name__

    @abstractmethod
    async def run(self) -> Any:
        """Job body; the return value is stored as the job's last summary."""

    async def before_run(self):
        logger.debug(f"Preparing to run {self.display_name}")

    async def after_run(self):
        logger.debug(f"Finished {self.display_name}")
