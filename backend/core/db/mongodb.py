from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, ReplaceOne, ReturnDocument, UpdateOne
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.config import (
    MONGO_DB_NAME,
    MONGO_HOST,
    MONGO_PASSWORD,
    MONGO_PORT,
    MONGO_URI,
    MONGO_USER,
)
from core.logger import Logger

logger = Logger(__name__)

# collection -> list of (key fields, unique)
IndexSpec = Dict[str, List[Tuple[Sequence[str], bool]]]


@dataclass
class UpsertResult:
    """Outcome of one batch write. Failures are reported, never raised."""

    ok: bool
    count: int = 0
    error: Optional[str] = None


def build_mongo_uri() -> str:
    if MONGO_URI:
        return MONGO_URI
    return (
        f"mongodb://{quote_plus(MONGO_USER)}:{quote_plus(MONGO_PASSWORD)}"
        f"@{MONGO_HOST}:{MONGO_PORT}/{MONGO_DB_NAME}?authSource={MONGO_DB_NAME}"
    )


class MongoDBClient:
    def __init__(self, uri: str = None, db_name: str = None):
        self.db_name = db_name or MONGO_DB_NAME
        # tz_aware so every datetime read back compares with the UTC datetimes we write
        self.client = AsyncIOMotorClient(uri or build_mongo_uri(), tz_aware=True)
        self.db = self.client[self.db_name]
        logger.info("MongoDB client initialized (async).")

    async def init(self):
        """Verify database access."""
        try:
            await self.client.admin.command("ping")
            logger.info("MongoDB connection established successfully.")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def get_collection(self, name: str):
        return self.db[name]

    async def list_collections(self):
        return await self.db.list_collection_names()

    async def ensure_indexes(self, specs: IndexSpec):
        """Create the compound natural-key indexes the upserts rely on."""
        for collection_name, indexes in specs.items():
            collection = self.get_collection(collection_name)
            for fields, unique in indexes:
                keys = [(field, ASCENDING) for field in fields]
                await collection.create_index(keys, unique=unique)
                logger.debug(f"Ensured index {list(fields)} (unique={unique}) on {collection_name}")

    async def find_one(self, collection_name: str, query: dict):
        collection = self.get_collection(collection_name)
        return await collection.find_one(query)

    async def find_many(
        self,
        collection_name: str,
        query: dict,
        sort: Optional[List[Tuple[str, int]]] = None,
        projection: Optional[dict] = None,
        limit: int = 0,
    ) -> List[dict]:
        collection = self.get_collection(collection_name)
        cursor = collection.find(query, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def count(self, collection_name: str, query: dict) -> int:
        collection = self.get_collection(collection_name)
        return await collection.count_documents(query)

    async def update_one(self, collection_name: str, query: dict, update_values: dict, upsert: bool = False):
        collection = self.get_collection(collection_name)
        result = await collection.update_one(query, {"$set": update_values}, upsert=upsert)
        logger.debug(
            f"Updated {result.modified_count} document(s) in collection {collection_name} "
            f"matching query {query} with upsert={upsert}"
        )
        return result.modified_count

    async def delete_many(self, collection_name: str, query: dict) -> int:
        collection = self.get_collection(collection_name)
        result = await collection.delete_many(query)
        logger.debug(f"Deleted {result.deleted_count} document(s) from collection {collection_name} matching query {query}")
        return result.deleted_count

    async def upsert_many(self, collection_name: str, rows: List[dict], key_fields: Sequence[str]) -> UpsertResult:
        """
        Replace every document matching a row's natural key, inserting when absent.
        Conflicting documents are fully replaced, never merged field-by-field.
        """
        if not rows:
            return UpsertResult(ok=True, count=0)
        operations = [
            ReplaceOne({field: row[field] for field in key_fields}, row, upsert=True)
            for row in rows
        ]
        return await self._bulk_write(collection_name, operations, len(rows))

    async def insert_missing(self, collection_name: str, rows: List[dict], key_fields: Sequence[str]) -> UpsertResult:
        """Insert rows whose natural key is not stored yet; stored documents are left untouched."""
        if not rows:
            return UpsertResult(ok=True, count=0)
        operations = [
            UpdateOne({field: row[field] for field in key_fields}, {"$setOnInsert": row}, upsert=True)
            for row in rows
        ]
        return await self._bulk_write(collection_name, operations, len(rows))

    async def set_many(self, collection_name: str, updates: List[Tuple[dict, dict]]) -> UpsertResult:
        """Apply `$set` updates to existing documents only, one (query, values) pair each."""
        if not updates:
            return UpsertResult(ok=True, count=0)
        operations = [UpdateOne(query, {"$set": values}) for query, values in updates]
        return await self._bulk_write(collection_name, operations, len(updates))

    async def _bulk_write(self, collection_name: str, operations: list, count: int) -> UpsertResult:
        collection = self.get_collection(collection_name)
        try:
            await collection.bulk_write(operations, ordered=False)
        except PyMongoError as e:
            logger.error(f"Bulk write to {collection_name} failed: {e}")
            return UpsertResult(ok=False, count=0, error=str(e))
        return UpsertResult(ok=True, count=count)

    async def acquire_lease(self, name: str, owner: str, ttl_seconds: int) -> bool:
        """
        Take the named lease unless another owner holds an unexpired one.
        Contention surfaces as a duplicate key on the upsert.
        """
        leases = self.get_collection("sync_leases")
        now = datetime.now(timezone.utc)
        try:
            lease = await leases.find_one_and_update(
                {"_id": name, "$or": [{"expires_at": {"$lte": now}}, {"owner": owner}]},
                {"$set": {
                    "owner": owner,
                    "acquired_at": now,
                    "expires_at": now + timedelta(seconds=ttl_seconds),
                }},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            return False
        return bool(lease) and lease.get("owner") == owner

    async def release_lease(self, name: str, owner: str) -> bool:
        leases = self.get_collection("sync_leases")
        result = await leases.delete_one({"_id": name, "owner": owner})
        return result.deleted_count > 0
