"""Data access used by the services.

``MongoStore`` talks to MongoDB through motor; ``MemoryStore`` keeps
collections in process and is selected with ``USE_MONGO=false`` (local
development and tests). Both raise ``ConflictError`` on unique-key
violations and run ``Pipeline`` objects through ``aggregate``.
"""
import copy
import logging
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.config import settings
from core.errors import ConflictError, UpstreamFailure
from db.mongodb import get_mongo_db
from db.pipeline import Pipeline, matches

logger = logging.getLogger(__name__)

USERS = "users"
SUBSCRIPTIONS = "subscriptions"
VIDEOS = "videos"


class Store:
    async def find_one(self, collection: str, query: dict) -> Optional[dict]:
        raise NotImplementedError

    async def insert_one(self, collection: str, doc: dict) -> ObjectId:
        raise NotImplementedError

    async def update_by_id(self, collection: str, doc_id: ObjectId, set_fields: Optional[dict] = None,
                           unset_fields: Iterable[str] = (), expected: Optional[dict] = None) -> bool:
        """Update one document; ``expected`` adds equality conditions to the filter.

        Returns whether a document matched.
        """
        raise NotImplementedError

    async def aggregate(self, collection: str, pipeline: Pipeline) -> List[dict]:
        raise NotImplementedError


def _update_spec(set_fields: Optional[dict], unset_fields: Iterable[str]) -> dict:
    spec = {}
    if set_fields:
        spec["$set"] = set_fields
    unset = list(unset_fields)
    if unset:
        spec["$unset"] = {name: "" for name in unset}
    return spec


class MongoStore(Store):
    """Store over a motor database.

    Unique-key violations become ConflictError; any other driver failure
    (timeouts, lost connections, rejected commands) becomes UpstreamFailure.
    """

    def __init__(self, db):
        self.db = db

    async def find_one(self, collection, query):
        try:
            return await self.db[collection].find_one(query)
        except PyMongoError as e:
            raise _upstream(collection, "find_one", e) from e

    async def insert_one(self, collection, doc):
        try:
            result = await self.db[collection].insert_one(doc)
        except DuplicateKeyError as e:
            raise ConflictError("User with email or username already exists") from e
        except PyMongoError as e:
            raise _upstream(collection, "insert_one", e) from e
        return result.inserted_id

    async def update_by_id(self, collection, doc_id, set_fields=None, unset_fields=(), expected=None):
        query = {"_id": doc_id, **(expected or {})}
        spec = _update_spec(set_fields, unset_fields)
        try:
            if not spec:
                return await self.db[collection].count_documents(query, limit=1) > 0
            result = await self.db[collection].update_one(query, spec)
        except DuplicateKeyError as e:
            raise ConflictError("User with email or username already exists") from e
        except PyMongoError as e:
            raise _upstream(collection, "update_one", e) from e
        return result.matched_count > 0

    async def aggregate(self, collection, pipeline):
        rows = []
        try:
            async for row in self.db[collection].aggregate(pipeline.to_mongo()):
                rows.append(row)
        except PyMongoError as e:
            raise _upstream(collection, "aggregate", e) from e
        return rows


def _upstream(collection: str, operation: str, exc: Exception) -> UpstreamFailure:
    logger.error(f"Mongo {operation} on {collection} failed: {exc!r}")
    return UpstreamFailure("Database operation failed")


class MemoryStore(Store):
    """In-process collections with unique-field enforcement"""

    def __init__(self, unique: Optional[Dict[str, Iterable[str]]] = None):
        self.collections: Dict[str, List[dict]] = {USERS: [], SUBSCRIPTIONS: [], VIDEOS: []}
        self.unique = {name: tuple(fields) for name, fields in (unique or {USERS: ("username", "email")}).items()}

    def _check_unique(self, collection: str, doc: dict, skip_id=None) -> None:
        for field in self.unique.get(collection, ()):
            if doc.get(field) is None:
                continue
            for other in self.collections.get(collection, []):
                if other["_id"] != skip_id and other.get(field) == doc[field]:
                    raise ConflictError("User with email or username already exists")

    async def find_one(self, collection, query):
        for doc in self.collections.get(collection, []):
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, collection, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self._check_unique(collection, doc)
        self.collections.setdefault(collection, []).append(doc)
        return doc["_id"]

    async def update_by_id(self, collection, doc_id, set_fields=None, unset_fields=(), expected=None):
        query = {"_id": doc_id, **(expected or {})}
        for doc in self.collections.get(collection, []):
            if not matches(doc, query):
                continue
            updated = {**doc, **copy.deepcopy(set_fields or {})}
            for name in unset_fields:
                updated.pop(name, None)
            self._check_unique(collection, updated, skip_id=doc_id)
            doc.clear()
            doc.update(updated)
            return True
        return False

    async def aggregate(self, collection, pipeline):
        docs = copy.deepcopy(self.collections.get(collection, []))
        return pipeline.apply(docs, self.collections)


_memory_store: Optional[MemoryStore] = None

def get_store() -> Store:
    """FastAPI dependency returning the configured store"""
    global _memory_store
    if not settings.USE_MONGO:
        if _memory_store is None:
            logger.info("USE_MONGO=false; using in-memory store")
            _memory_store = MemoryStore()
        return _memory_store
    mdb = get_mongo_db()
    if mdb is None:
        raise UpstreamFailure("Database not available")
    return MongoStore(mdb)
