from typing import Optional
from core.db.mongodb import MongoDBClient

from core.logger import Logger
logger = Logger(__name__)


class BaseDatabase:
    """Holds the one Mongo client shared by services, sync handlers and cron jobs."""

    mongodb: Optional[MongoDBClient] = None

    @classmethod
    def init_databases(cls, mongodb: MongoDBClient):
        logger.info(f"Initializing database client for '{mongodb.db_name}'..")
        BaseDatabase.mongodb = mongodb
