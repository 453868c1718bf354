import asyncio
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core import config
from core.base_database import BaseDatabase
from core.db.mongodb import MongoDBClient
from core.loader import auto_load_all
from core.logger import Logger, setup_logging
from core.registry import ServiceRegistry
from cron.runner import init_cron_background

# Initialize logger before anything else
setup_logging()

app_logger = Logger(__name__)

# establish database connection
mongodb = MongoDBClient()
BaseDatabase.init_databases(mongodb)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting up application...")
    await mongodb.init()
    loaded = auto_load_all()
    app_logger.info(f"Loaded {len(loaded)} submodules")

    await ServiceRegistry.ensure_indexes(mongodb)

    # Register routers after auto_load_all() populates ServiceRegistry
    for router in ServiceRegistry.get_all_apis():
        app.include_router(router)

    scheduler_task = None
    if config.ENABLE_CRON:
        scheduler_task = await init_cron_background()
        app_logger.info("Cron scheduler started in API server.")
    else:
        app_logger.debug("Cron scheduler disabled in this service.")

    yield

    app_logger.info("Shutting down application...")
    if scheduler_task:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Billing Analytics", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}
