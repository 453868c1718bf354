import os

MONGO_USER = os.getenv("MONGO_USER", "")
MONGO_PASSWORD = os.getenv("MONGO_PASSWORD", "")
MONGO_HOST = os.getenv("MONGO_HOST", "")
MONGO_PORT = os.getenv("MONGO_PORT", "")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "")
MONGO_URI = os.getenv("MONGO_URI", "")

CRON_SECRET = os.getenv("CRON_SECRET", "")
ENABLE_CRON = os.getenv("ENABLE_CRON", "false").lower() == "true"

STRIPE_REQUESTS_PER_SECOND = float(os.getenv("STRIPE_REQUESTS_PER_SECOND", "4"))
STRIPE_PAGE_SIZE = int(os.getenv("STRIPE_PAGE_SIZE", "100"))

SYNC_COOLDOWN_SECONDS = int(os.getenv("SYNC_COOLDOWN_SECONDS", "3600"))
SYNC_LEASE_SECONDS = int(os.getenv("SYNC_LEASE_SECONDS", "1800"))
SYNC_SWEEP_CONCURRENCY = int(os.getenv("SYNC_SWEEP_CONCURRENCY", "3"))

MAX_COHORT_MONTHS = int(os.getenv("MAX_COHORT_MONTHS", "24"))

STRIPE_EVENTS_TO_SYNC = [
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
    "invoice.payment_failed",
    "invoice.paid",
    "customer.created",
    "customer.deleted",
]
