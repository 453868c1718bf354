import asyncio
import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from croniter import croniter

from core.base_database import BaseDatabase
from core.loader import dynamic_import
from core.logger import Logger
from cron.registry import JOBS_COLLECTION

logger = Logger(__name__)

SCHEDULER_LEASE = "cron_scheduler"
SCHEDULER_OWNER = f"{os.getpid()}:{uuid4().hex[:8]}"

# unit -> cron field index that carries the step
STEP_FIELDS = {"m": 0, "h": 1, "d": 2, "M": 3}


def schedule_to_cron(schedule: str, reference: datetime = None) -> str:
    """
    Convert a short schedule ("15m", "1h", "1d", "2w", "1M", "1y") to a cron
    expression. Coarser units keep the reference time's minute (and hour),
    so a daily job keeps firing at the time of day it was first scheduled.
    """
    reference = reference or datetime.now(timezone.utc)
    fields = ["*", "*", "*", "*", "*"]  # minute, hour, day of month, month, day of week

    for part in schedule.split(","):
        part = part.strip()
        value, unit = part[:-1], part[-1:]
        if not value.isdigit() or unit not in ("m", "h", "d", "w", "M", "y"):
            logger.warning(f"Ignoring unknown schedule part: {part!r}")
            continue
        value = int(value)
        if unit == "w":
            unit, value = "d", value * 7
        elif unit == "y":
            unit, value = "M", value * 12

        if unit != "m":
            fields[0] = str(reference.minute)
        if unit in ("d", "M"):
            fields[1] = str(reference.hour)
        fields[STEP_FIELDS[unit]] = f"*/{value}"

    return " ".join(fields)


def next_run_after(schedule: str, now: datetime) -> datetime:
    return croniter(schedule_to_cron(schedule, now), now).get_next(datetime)


async def execute_job(job: dict):
    """Run one due job; its outcome is written back to the job document."""
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    job_id = job["_id"]
    started = datetime.now(timezone.utc)
    logger.info(f"Starting job: {job['name']}")

    await collection.update_one({"_id": job_id}, {"$set": {"running": True, "last_heartbeat": started}})
    try:
        job_class = dynamic_import(str(job["file"]), job["class"])
        instance = job_class(job.get("params") or {})
        await instance.before_run()
        summary = await instance.run()
        await instance.after_run()
    except Exception as e:
        logger.error(f"Job {job['name']} failed: {e}")
        await collection.update_one(
            {"_id": job_id},
            {"$set": {
                "running": False,
                "last_error": str(e),
                "next_run": next_run_after(job["schedule"], datetime.now(timezone.utc)),
            }},
        )
        return

    finished = datetime.now(timezone.utc)
    next_run = next_run_after(job["schedule"], finished)
    await collection.update_one(
        {"_id": job_id},
        {"$set": {
            "running": False,
            "last_run": finished,
            "next_run": next_run,
            "last_heartbeat": finished,
            "last_error": None,
            "last_summary": summary,
        }},
    )
    logger.info(f"Completed job: {job['name']} in {(finished - started).total_seconds():.1f}s (next run: {next_run})")


async def recover_stale_jobs(now: datetime = None):
    """Clear the running flag of jobs whose heartbeat is older than their max runtime."""
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    now = now or datetime.now(timezone.utc)
    running = await collection.find({"running": True}).to_list(length=None)
    for job in running:
        heartbeat = job.get("last_heartbeat")
        limit = timedelta(seconds=job.get("max_runtime_sec") or 600)
        if heartbeat is None or heartbeat + limit < now:
            logger.warning(f"Resetting stale job: {job['name']}")
            await collection.update_one({"_id": job["_id"]}, {"$set": {"running": False}})


async def run_due_jobs():
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    await recover_stale_jobs()

    due = await collection.find({
        "active": True,
        "running": False,
        "next_run": {"$lte": datetime.now(timezone.utc)},
    }).to_list(length=None)
    if not due:
        logger.debug("No cron jobs due.")
        return

    logger.info(f"{len(due)} cron job(s) due.")
    await asyncio.gather(*(execute_job(job) for job in due))


async def start_scheduler(interval_seconds: int = 60):
    """
    Poll for due jobs every `interval_seconds`. Only the worker holding the
    scheduler lease runs jobs; the lease is renewed on every tick and
    expires if this worker dies.
    """
    mongodb = BaseDatabase.mongodb
    lease_ttl = interval_seconds * 3
    logger.info(f"Starting cron scheduler (interval={interval_seconds}s, owner={SCHEDULER_OWNER})")

    while True:
        try:
            if await mongodb.acquire_lease(SCHEDULER_LEASE, SCHEDULER_OWNER, lease_ttl):
                await run_due_jobs()
            else:
                logger.debug("Cron scheduler lease held by another worker.")
        except Exception as e:
            logger.error(f"Scheduler loop error: {e}")
        await asyncio.sleep(interval_seconds)
