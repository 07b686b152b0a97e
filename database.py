"""
Persistence port and backends

Every service talks to a `DocumentStore`. The concrete remote backend (MongoDB,
Firestore or in-process memory) is picked by the STORE_BACKEND setting and
wrapped in a `ResilientStore`, which falls back to the tenant-scoped
`LocalCache` whenever the remote call raises.

Filters are plain equality dicts so the same query runs on every backend.
"""

from __future__ import annotations
import copy
import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from bson import ObjectId
from pymongo import MongoClient

from cache import LocalCache, matches, scope_of
from config import Settings, get_settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A write failed on the remote store and on the local fallback."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def timestamp_key(value: Any) -> str:
    # Remote backends hand back datetimes, the JSON cache hands back strings
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


class DocumentStore:
    """Remote document store port. Ids are always strings on the way out."""

    name = "base"

    def get_documents(self, collection: str, filter_dict: Optional[dict[str, Any]] = None, limit: Optional[int] = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_document(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def create_document(self, collection: str, data: dict[str, Any], doc_id: Optional[str] = None) -> dict[str, Any]:
        raise NotImplementedError

    def update_document(self, collection: str, doc_id: str, patch: dict[str, Any]) -> bool:
        raise NotImplementedError

    def delete_document(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def increment_field(self, collection: str, doc_id: str, field: str, delta: float) -> bool:
        raise NotImplementedError

    def ping(self) -> dict[str, Any]:
        return {"backend": self.name}


class MemoryStore(DocumentStore):
    name = "memory"

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    def _col(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def get_documents(self, collection, filter_dict=None, limit=None):
        docs = [copy.deepcopy(d) for d in self._col(collection).values() if matches(d, filter_dict)]
        return docs[:limit] if limit else docs

    def get_document(self, collection, doc_id):
        doc = self._col(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def create_document(self, collection, data, doc_id=None):
        doc_id = doc_id or new_id()
        doc = {**copy.deepcopy(data), "id": doc_id}
        self._col(collection)[doc_id] = doc
        return copy.deepcopy(doc)

    def update_document(self, collection, doc_id, patch):
        doc = self._col(collection).get(doc_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(patch))
        return True

    def delete_document(self, collection, doc_id):
        return self._col(collection).pop(doc_id, None) is not None

    def increment_field(self, collection, doc_id, field, delta):
        doc = self._col(collection).get(doc_id)
        if doc is None:
            return False
        doc[field] = (doc.get(field) or 0) + delta
        return True

    def ping(self):
        return {"backend": self.name, "collections": sorted(self._data)[:10]}


class MongoStore(DocumentStore):
    name = "mongo"

    def __init__(self, url: str, database_name: str):
        self.client = MongoClient(url, serverSelectionTimeoutMS=3000)
        self.db = self.client[database_name]

    @staticmethod
    def _key(doc_id: str):
        # Fallback-created ids are uuid hex, not ObjectIds
        return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id

    @staticmethod
    def _out(doc: dict[str, Any]) -> dict[str, Any]:
        doc["id"] = str(doc.pop("_id"))
        return doc

    def get_documents(self, collection, filter_dict=None, limit=None):
        cursor = self.db[collection].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return [self._out(d) for d in cursor]

    def get_document(self, collection, doc_id):
        doc = self.db[collection].find_one({"_id": self._key(doc_id)})
        return self._out(doc) if doc else None

    def create_document(self, collection, data, doc_id=None):
        payload = {k: v for k, v in data.items() if k != "id"}
        if doc_id:
            payload["_id"] = doc_id
        result = self.db[collection].insert_one(payload)
        payload.pop("_id", None)
        return {**payload, "id": str(result.inserted_id)}

    def update_document(self, collection, doc_id, patch):
        res = self.db[collection].update_one({"_id": self._key(doc_id)}, {"$set": patch})
        return res.matched_count > 0

    def delete_document(self, collection, doc_id):
        res = self.db[collection].delete_one({"_id": self._key(doc_id)})
        return res.deleted_count > 0

    def increment_field(self, collection, doc_id, field, delta):
        res = self.db[collection].update_one({"_id": self._key(doc_id)}, {"$inc": {field: delta}})
        return res.matched_count > 0

    def ping(self):
        return {
            "backend": self.name,
            "database_name": self.db.name,
            "collections": self.db.list_collection_names()[:10],
        }


class FirestoreStore(DocumentStore):
    name = "firestore"

    def __init__(self, credentials_path: Optional[str] = None):
        import firebase_admin
        from firebase_admin import credentials, firestore
        from google.cloud.firestore_v1.base_query import FieldFilter

        if not firebase_admin._apps:
            cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
            firebase_admin.initialize_app(cred)
        self.db = firestore.client()
        self._increment = firestore.Increment
        self._field_filter = FieldFilter

    def get_documents(self, collection, filter_dict=None, limit=None):
        query = self.db.collection(collection)
        for field, value in (filter_dict or {}).items():
            query = query.where(filter=self._field_filter(field, "==", value))
        if limit:
            query = query.limit(limit)
        return [{**snap.to_dict(), "id": snap.id} for snap in query.stream()]

    def get_document(self, collection, doc_id):
        snap = self.db.collection(collection).document(doc_id).get()
        return {**snap.to_dict(), "id": snap.id} if snap.exists else None

    def create_document(self, collection, data, doc_id=None):
        payload = {k: v for k, v in data.items() if k != "id"}
        if doc_id:
            ref = self.db.collection(collection).document(doc_id)
            ref.set(payload)
        else:
            _, ref = self.db.collection(collection).add(payload)
        return {**payload, "id": ref.id}

    def update_document(self, collection, doc_id, patch):
        ref = self.db.collection(collection).document(doc_id)
        if not ref.get().exists:
            return False
        ref.update(patch)
        return True

    def delete_document(self, collection, doc_id):
        ref = self.db.collection(collection).document(doc_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def increment_field(self, collection, doc_id, field, delta):
        ref = self.db.collection(collection).document(doc_id)
        if not ref.get().exists:
            return False
        ref.update({field: self._increment(delta)})
        return True


class UnavailableStore(DocumentStore):
    """Stands in for a backend that failed to initialise; every call degrades."""

    name = "unavailable"

    def __init__(self, reason: str):
        self.reason = reason

    def _fail(self, *args, **kwargs):
        raise StoreError(self.reason)

    get_documents = get_document = create_document = _fail
    update_document = delete_document = increment_field = _fail

    def ping(self):
        return {"backend": self.name, "error": self.reason}


class ResilientStore:
    """
    Remote first, local cache second.

    Reads never raise. Writes fall back to the cache and raise StoreError only
    when the cache write fails too, or when an update/delete targets a record
    the cache has never seen.
    """

    def __init__(self, remote: DocumentStore, cache: LocalCache):
        self.remote = remote
        self.cache = cache

    @property
    def backend(self) -> str:
        return self.remote.name

    def get_documents(self, collection: str, filter_dict: Optional[dict[str, Any]] = None, limit: Optional[int] = None) -> list[dict[str, Any]]:
        scope = scope_of((filter_dict or {}).get("store_id"))
        try:
            docs = self.remote.get_documents(collection, filter_dict, limit)
        except Exception as e:
            logger.warning("Remote read of %s failed, serving local cache: %s", collection, e)
            return self.cache.find(scope, collection, filter_dict, limit)
        # Records that only ever reached the cache stay visible once the remote is back
        known = {d["id"] for d in docs}
        pending = [r for r in self.cache.find(scope, collection, filter_dict) if r.get("_local") and r.get("id") not in known]
        docs.extend(pending)
        return docs[:limit] if limit else docs

    def get_document(self, collection: str, doc_id: str, store_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        scope = scope_of(store_id)
        try:
            doc = self.remote.get_document(collection, doc_id)
        except Exception as e:
            logger.warning("Remote read of %s/%s failed, serving local cache: %s", collection, doc_id, e)
            return self.cache.get(scope, collection, doc_id)
        if doc is None:
            cached = self.cache.get(scope, collection, doc_id)
            if cached and cached.get("_local"):
                return cached
        return doc

    def find_document(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """get_document for callers that do not know the record's store (gateway callbacks)."""
        try:
            doc = self.remote.get_document(collection, doc_id)
        except Exception as e:
            logger.warning("Remote read of %s/%s failed, searching every cached store: %s", collection, doc_id, e)
            return self.cache.locate(collection, doc_id)
        if doc is None:
            cached = self.cache.locate(collection, doc_id)
            if cached and cached.get("_local"):
                return cached
        return doc

    def create_document(self, collection: str, data: dict[str, Any], doc_id: Optional[str] = None) -> dict[str, Any]:
        now = utcnow()
        record = {**data, "created_at": now, "updated_at": now}
        scope = scope_of(record.get("store_id"))
        try:
            created = self.remote.create_document(collection, record, doc_id)
        except Exception as e:
            logger.warning("Remote create in %s failed, writing to local cache: %s", collection, e)
            created = {**record, "id": doc_id or new_id(), "_local": True}
            try:
                self.cache.upsert(scope, collection, created)
            except OSError as cache_error:
                raise StoreError(f"Could not persist {collection} record") from cache_error
            return created
        self._mirror(self.cache.upsert, scope, collection, created)
        return created

    def update_document(self, collection: str, doc_id: str, patch: dict[str, Any], store_id: Optional[str] = None) -> bool:
        patch = {**patch, "updated_at": utcnow()}
        scope = scope_of(store_id)
        try:
            matched = self.remote.update_document(collection, doc_id, patch)
        except Exception as e:
            logger.warning("Remote update of %s/%s failed, trying local cache: %s", collection, doc_id, e)
            return self._local_write(self.cache.patch, scope, collection, doc_id, patch)
        if matched:
            self._mirror(self.cache.patch, scope, collection, doc_id, patch)
            return True
        return self.cache.patch(scope, collection, doc_id, patch)

    def increment_field(self, collection: str, doc_id: str, field: str, delta: float, store_id: Optional[str] = None) -> bool:
        scope = scope_of(store_id)
        try:
            matched = self.remote.increment_field(collection, doc_id, field, delta)
        except Exception as e:
            logger.warning("Remote increment of %s/%s.%s failed, trying local cache: %s", collection, doc_id, field, e)
            return self._local_write(self.cache.increment, scope, collection, doc_id, field, delta)
        if matched:
            self._mirror(self.cache.increment, scope, collection, doc_id, field, delta)
            return True
        return self.cache.increment(scope, collection, doc_id, field, delta)

    def delete_document(self, collection: str, doc_id: str, store_id: Optional[str] = None) -> bool:
        scope = scope_of(store_id)
        remote_error = None
        removed = False
        try:
            removed = self.remote.delete_document(collection, doc_id)
        except Exception as e:
            logger.warning("Remote delete of %s/%s failed: %s", collection, doc_id, e)
            remote_error = e
        try:
            removed_locally = self.cache.remove(scope, collection, doc_id)
        except OSError as e:
            logger.warning("Local cleanup of %s/%s failed: %s", collection, doc_id, e)
            removed_locally = False
        if remote_error is not None and not removed_locally:
            raise StoreError(f"Could not delete {collection}/{doc_id}") from remote_error
        return removed or removed_locally

    def ping(self) -> dict[str, Any]:
        try:
            return self.remote.ping()
        except Exception as e:
            return {"backend": self.remote.name, "error": str(e)[:80]}

    def _local_write(self, op, scope: str, collection: str, doc_id: str, *args) -> bool:
        try:
            found = op(scope, collection, doc_id, *args)
        except OSError as e:
            raise StoreError(f"Could not persist {collection}/{doc_id}") from e
        if not found:
            raise StoreError(f"{collection}/{doc_id} is unreachable remotely and not cached locally")
        return True

    @staticmethod
    def _mirror(op, *args) -> None:
        try:
            op(*args)
        except OSError as e:
            logger.warning("Could not mirror write into local cache: %s", e)


def build_backend(settings: Settings) -> DocumentStore:
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        return MemoryStore()
    try:
        if backend == "mongo":
            return MongoStore(settings.DATABASE_URL, settings.DATABASE_NAME)
        if backend == "firestore":
            return FirestoreStore(settings.FIREBASE_CREDENTIALS)
    except Exception as e:
        logger.error("Could not initialise %s backend, running on local cache only: %s", backend, e)
        return UnavailableStore(str(e))
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")


@lru_cache
def get_store() -> ResilientStore:
    settings = get_settings()
    return ResilientStore(build_backend(settings), LocalCache(settings.FALLBACK_CACHE_DIR))
