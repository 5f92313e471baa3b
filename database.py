"""
Document Store Client

MongoDB access for the marketplace. A DocumentStore wraps one pymongo
database handle and is created once at startup, then handed to every
component that needs it (listings, notifications, messages, reviews).
"""

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import NotFoundError, UnavailableError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DELETE_BATCH_SIZE = 500


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Expose `_id` as `id` and turn datetimes into ISO strings"""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    for key, val in list(out.items()):
        if isinstance(val, datetime):
            out[key] = val.isoformat()
        elif isinstance(val, dict):
            out[key] = {
                k: v.isoformat() if isinstance(v, datetime) else v for k, v in val.items()
            }
    return out


class Subscription:
    """
    Handle for a live change feed.

    Changes are read on a daemon thread and handed to `callback` as
    (operation_type, document). Call `unsubscribe()` when the feed is no
    longer needed; the stream is closed by the reader thread on its way out.
    """

    def __init__(self, stream, callback: Callable[[str, Optional[Dict[str, Any]]], None]):
        self._stream = stream
        self._callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def _run(self):
        try:
            while not self._stopped.is_set() and self._stream.alive:
                change = self._stream.try_next()
                if change is None:
                    continue
                doc = change.get("fullDocument")
                if doc is None:
                    doc = {"_id": change.get("documentKey", {}).get("_id")}
                try:
                    self._callback(change.get("operationType"), serialize(doc))
                except Exception:
                    logger.exception("Change listener callback failed")
        except PyMongoError as e:
            if not self._stopped.is_set():
                logger.error("Change stream stopped: %s", e)
        finally:
            self._stopped.set()
            self._stream.close()

    def unsubscribe(self, timeout: float = 5.0):
        if self._stopped.is_set() and not self._thread.is_alive():
            return
        self._stopped.set()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)


class DocumentStore:
    """Collection-scoped reads and writes over one MongoDB database"""

    def __init__(self, db, use_transactions: bool = False,
                 delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE):
        self.db = db
        self.use_transactions = use_transactions
        self.delete_batch_size = max(1, int(delete_batch_size))
        self._local = threading.local()

    @classmethod
    def from_env(cls) -> Optional["DocumentStore"]:
        """Build a store from DATABASE_URL / DATABASE_NAME, or None when unset"""
        database_url = os.getenv("DATABASE_URL")
        database_name = os.getenv("DATABASE_NAME")
        if not (database_url and database_name):
            logger.warning("DATABASE_URL or DATABASE_NAME not set; running without a database")
            return None

        client = MongoClient(database_url)
        logger.info("Connected document store to database %s", database_name)
        return cls(
            client[database_name],
            use_transactions=_env_flag("MONGO_TRANSACTIONS"),
            delete_batch_size=int(os.getenv("DELETE_BATCH_SIZE", DEFAULT_DELETE_BATCH_SIZE)),
        )

    # ---------------------------
    # Transactions
    # ---------------------------
    def _session_kwargs(self) -> Dict[str, Any]:
        session = getattr(self._local, "session", None)
        return {"session": session} if session is not None else {}

    @contextmanager
    def transaction(self):
        """
        Run the enclosed store calls in one multi-document transaction.

        Only active when the store was built with use_transactions=True (the
        server must be a replica set). Nested blocks join the outer one.
        Otherwise the block runs with each write committed on its own.
        """
        if not self.use_transactions or getattr(self._local, "session", None) is not None:
            yield
            return

        with self.db.client.start_session() as session:
            with session.start_transaction():
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None

    # ---------------------------
    # Reads
    # ---------------------------
    def get_document(self, collection_name: str, _id: str) -> Optional[Dict[str, Any]]:
        return self.db[collection_name].find_one({"_id": _id}, **self._session_kwargs())

    def get_documents(self, collection_name: str, filter_dict: dict = None, limit: int = None,
                      sort: List = None, projection: dict = None) -> List[Dict[str, Any]]:
        """Get documents from collection"""
        cursor = self.db[collection_name].find(filter_dict or {}, projection, **self._session_kwargs())
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def count_documents(self, collection_name: str, filter_dict: dict = None) -> int:
        return self.db[collection_name].count_documents(filter_dict or {}, **self._session_kwargs())

    # ---------------------------
    # Writes
    # ---------------------------
    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> str:
        """Insert a single document with timestamps and return its id"""
        data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)

        doc_id = data_dict.pop("id", None) or data_dict.get("_id") or str(ObjectId())
        data_dict["_id"] = str(doc_id)

        now = datetime.now(timezone.utc)
        data_dict["created_at"] = data_dict.get("created_at") or now
        data_dict["updated_at"] = now

        result = self.db[collection_name].insert_one(data_dict, **self._session_kwargs())
        return str(result.inserted_id)

    def update_by_id(self, collection_name: str, _id: str, updates: Dict[str, Any]) -> int:
        updates = dict(updates)
        updates.pop("id", None)
        updates.pop("_id", None)
        updates["updated_at"] = datetime.now(timezone.utc)
        result = self.db[collection_name].update_one(
            {"_id": _id}, {"$set": updates}, **self._session_kwargs()
        )
        if result.matched_count == 0:
            raise NotFoundError(f"{collection_name} document {_id} not found")
        return result.modified_count

    def update_many(self, collection_name: str, filter_dict: Dict[str, Any],
                    updates: Dict[str, Any]) -> int:
        result = self.db[collection_name].update_many(
            filter_dict, {"$set": dict(updates)}, **self._session_kwargs()
        )
        return result.modified_count

    def add_to_set(self, collection_name: str, filter_dict: Dict[str, Any], field: str, value: Any) -> int:
        """Add value to the array `field` of every matching document, once"""
        result = self.db[collection_name].update_many(
            filter_dict, {"$addToSet": {field: value}}, **self._session_kwargs()
        )
        return result.modified_count

    def delete_by_id(self, collection_name: str, _id: str) -> int:
        result = self.db[collection_name].delete_one({"_id": _id}, **self._session_kwargs())
        return result.deleted_count

    def delete_where(self, collection_name: str, filter_dict: Dict[str, Any]) -> int:
        """
        Delete every document matching filter_dict.

        Matching ids are collected first and removed in batches of
        delete_batch_size, one batch at a time.
        """
        ids = [d["_id"] for d in self.get_documents(collection_name, filter_dict, projection={"_id": 1})]
        deleted = 0
        for start in range(0, len(ids), self.delete_batch_size):
            batch = ids[start:start + self.delete_batch_size]
            result = self.db[collection_name].delete_many(
                {"_id": {"$in": batch}}, **self._session_kwargs()
            )
            deleted += result.deleted_count
        return deleted

    # ---------------------------
    # Change feeds
    # ---------------------------
    def subscribe(self, collection_name: str,
                  callback: Callable[[str, Optional[Dict[str, Any]]], None],
                  filter_dict: Dict[str, Any] = None,
                  max_await_time_ms: int = 1000) -> Subscription:
        """Listen to inserts/updates/deletes on a collection until unsubscribed"""
        pipeline = []
        if filter_dict:
            pipeline.append({"$match": {f"fullDocument.{k}": v for k, v in filter_dict.items()}})
        stream = self.db[collection_name].watch(
            pipeline, full_document="updateLookup", max_await_time_ms=max_await_time_ms
        )
        return Subscription(stream, callback)

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()


def require_store(store: Optional[DocumentStore]) -> DocumentStore:
    if store is None:
        raise UnavailableError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return store
