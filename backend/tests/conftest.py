"""
Pytest configuration for the billing analytics backend.
Provides an in-memory stand-in for MongoDBClient shared by the service tests.
"""

import os
from copy import deepcopy
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet

# Credentials are encrypted at rest - a key must exist before any service import
os.environ.setdefault("PROJECTS_SECRET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SKIP_INDEX_REGISTRATION", "true")

import pytest

from core.base_database import BaseDatabase
from core.base_handler import BaseSyncHandler
from core.db.mongodb import UpsertResult
from core.errors import TransportError


def _matches_value(value, condition) -> bool:
    if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
        for op, expected in condition.items():
            if op == "$ne" and value == expected:
                return False
            if op == "$nin" and value in expected:
                return False
            if op == "$in" and value not in expected:
                return False
            if op == "$lte" and not (value is not None and value <= expected):
                return False
            if op == "$gte" and not (value is not None and value >= expected):
                return False
        return True
    return value == condition


def matches(doc: dict, query: dict) -> bool:
    return all(_matches_value(doc.get(field), condition) for field, condition in query.items())


class FakeMongoDB:
    """In-memory implementation of the MongoDBClient methods the services call."""

    def __init__(self):
        self.collections = {}
        self.leases = {}
        self.fail_writes = set()
        self.write_calls = []

    def docs(self, name: str) -> list:
        return self.collections.setdefault(name, [])

    async def ensure_indexes(self, specs):
        return None

    async def find_one(self, collection_name: str, query: dict):
        for doc in self.docs(collection_name):
            if matches(doc, query):
                return deepcopy(doc)
        return None

    async def find_many(self, collection_name, query, sort=None, projection=None, limit=0):
        found = [deepcopy(d) for d in self.docs(collection_name) if matches(d, query)]
        for field, direction in reversed(sort or []):
            found.sort(key=lambda d: d.get(field), reverse=direction < 0)
        if limit:
            found = found[:limit]
        if projection:
            shown = [k for k, v in projection.items() if v]
            if shown:
                found = [{k: d[k] for k in shown if k in d} for d in found]
            else:
                hidden = [k for k, v in projection.items() if not v]
                found = [{k: v for k, v in d.items() if k not in hidden} for d in found]
        return found

    async def count(self, collection_name, query):
        return sum(1 for d in self.docs(collection_name) if matches(d, query))

    async def update_one(self, collection_name, query, update_values, upsert=False):
        for doc in self.docs(collection_name):
            if matches(doc, query):
                doc.update(deepcopy(update_values))
                return 1
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(deepcopy(update_values))
            self.docs(collection_name).append(doc)
        return 0

    async def delete_many(self, collection_name, query):
        kept = [d for d in self.docs(collection_name) if not matches(d, query)]
        deleted = len(self.docs(collection_name)) - len(kept)
        self.collections[collection_name] = kept
        return deleted

    def _failure(self, collection_name):
        if collection_name in self.fail_writes:
            return UpsertResult(ok=False, error=f"write to {collection_name} rejected")
        return None

    async def upsert_many(self, collection_name, rows, key_fields):
        self.write_calls.append((collection_name, len(rows)))
        if not rows:
            return UpsertResult(ok=True, count=0)
        failure = self._failure(collection_name)
        if failure:
            return failure
        docs = self.docs(collection_name)
        for row in rows:
            key = {f: row[f] for f in key_fields}
            docs[:] = [d for d in docs if not matches(d, key)]
            docs.append(deepcopy(row))
        return UpsertResult(ok=True, count=len(rows))

    async def insert_missing(self, collection_name, rows, key_fields):
        self.write_calls.append((collection_name, len(rows)))
        if not rows:
            return UpsertResult(ok=True, count=0)
        failure = self._failure(collection_name)
        if failure:
            return failure
        docs = self.docs(collection_name)
        for row in rows:
            key = {f: row[f] for f in key_fields}
            if not any(matches(d, key) for d in docs):
                docs.append(deepcopy(row))
        return UpsertResult(ok=True, count=len(rows))

    async def set_many(self, collection_name, updates):
        if not updates:
            return UpsertResult(ok=True, count=0)
        failure = self._failure(collection_name)
        if failure:
            return failure
        for query, values in updates:
            for doc in self.docs(collection_name):
                if matches(doc, query):
                    doc.update(deepcopy(values))
                    break
        return UpsertResult(ok=True, count=len(updates))

    async def acquire_lease(self, name, owner, ttl_seconds):
        now = datetime.now(timezone.utc)
        lease = self.leases.get(name)
        if lease and lease["owner"] != owner and lease["expires_at"] > now:
            return False
        self.leases[name] = {"owner": owner, "expires_at": now + timedelta(seconds=ttl_seconds)}
        return True

    async def release_lease(self, name, owner):
        if self.leases.get(name, {}).get("owner") == owner:
            del self.leases[name]
            return True
        return False


@pytest.fixture
def mongodb():
    previous = BaseDatabase.mongodb
    fake = FakeMongoDB()
    BaseDatabase.mongodb = fake
    BaseSyncHandler._locks.clear()
    yield fake
    BaseDatabase.mongodb = previous


@pytest.fixture
def transport_error():
    return TransportError("Stripe is unavailable")
