import hashlib
import inspect
from datetime import datetime, timezone
from typing import Dict, List, Optional, Type

from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)

JOBS_COLLECTION = "cron_jobs"


def job_fingerprint(job_class, params: dict = None) -> Optional[str]:
    """Hash of the job's source and settings, used to detect changed definitions."""
    try:
        source = inspect.getsource(job_class)
    except (OSError, TypeError):
        return None
    text = "|".join([
        source,
        str(getattr(job_class, "name", "")),
        str(getattr(job_class, "schedule", "")),
        str(getattr(job_class, "active", "")),
        str(getattr(job_class, "max_runtime_sec", "")),
        str(params or {}),
    ])
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class CronRegistry(BaseDatabase):
    """
    In-memory list of decorated jobs, mirrored to the ``cron_jobs`` collection
    once the database is available. The scheduler only reads the collection.
    """

    _registry: Dict[str, dict] = {}

    @classmethod
    def register(cls, job_class: Type, params: dict = None):
        job_id = job_class.job_id()
        cls._registry[job_id] = {
            "class": job_class,
            "params": params or {},
            "hash": job_fingerprint(job_class, params),
        }

    @classmethod
    def list_registered_jobs(cls) -> List[str]:
        return list(cls._registry.keys())

    @classmethod
    def get_job_class(cls, job_id: str):
        entry = cls._registry.get(job_id)
        return entry["class"] if entry else None

    @classmethod
    async def sync_all_to_db(cls):
        for job_id, entry in cls._registry.items():
            await cls._sync_to_db(job_id, entry)

    @classmethod
    async def _sync_to_db(cls, job_id: str, entry: dict):
        """Insert a new job definition, or refresh it when its fingerprint changed."""
        collection = cls.mongodb.get_collection(JOBS_COLLECTION)
        job_class = entry["class"]
        now = datetime.now(timezone.utc)

        definition = {
            "name": getattr(job_class, "name", None) or job_class.__name__,
            "file": job_class.__module__,
            "class": job_class.__name__,
            "schedule": job_class.schedule,
            "active": job_class.active,
            "params": entry["params"],
            "job_hash": entry["hash"],
            "max_runtime_sec": job_class.max_runtime_sec,
            "updated_at": now,
        }

        existing = await collection.find_one({"_id": job_id})
        if not existing:
            await collection.insert_one({
                "_id": job_id,
                **definition,
                "created_at": now,
                "last_run": None,
                "next_run": now,
                "running": False,
            })
            logger.info(f"Registered new cron job: {job_id}")
        elif existing.get("job_hash") != entry["hash"]:
            await collection.update_one({"_id": job_id}, {"$set": definition})
            logger.info(f"Updated cron job definition: {job_id}")
        else:
            logger.debug(f"Cron job already up-to-date: {job_id}")


def cron_job(cls):
    """Class decorator: register the job; it is written to Mongo at scheduler start."""
    CronRegistry.register(cls)
    return cls
