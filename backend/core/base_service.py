from datetime import datetime, timezone
from core.base_database import BaseDatabase
from core.db.mongodb import IndexSpec

from core.logger import Logger
logger = Logger(__name__)


class BaseService(BaseDatabase):
    """
    Named service bound to the shared MongoDB client.
    Subclasses declare the natural-key indexes their collections need;
    the registry creates them once the database is reachable.
    """

    name: str = "base"
    indexes: IndexSpec = {}

    def __init__(self):
        logger.info(f"Initializing service: {self.name}")
        super().__init__()

    @staticmethod
    def utcnow() -> datetime:
        return datetime.now(timezone.utc)
