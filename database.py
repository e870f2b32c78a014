"""
MongoDB access for the asset tracker.

Collections (one per document type in ``schemas``):

- User -> "user"
- Asset -> "asset"
- AssetRequest -> "assetrequest"

The client is created lazily, once per ``MongoContext``, and shared by every
request through the ``get_db`` dependency.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

USERS = "user"
ASSETS = "asset"
ASSET_REQUESTS = "assetrequest"

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("role", ASCENDING)])
    db[USERS].create_index([("status", ASCENDING)])

    db[ASSETS].create_index([("code", ASCENDING)], unique=True)
    db[ASSETS].create_index([("status", ASCENDING)])
    db[ASSETS].create_index([("currentHolder", ASCENDING)])

    for field in ("asset", "requestedBy", "status", "requestType"):
        db[ASSET_REQUESTS].create_index([(field, ASCENDING)])


class MongoContext:
    """Process-wide handle to the document store.

    ``client_factory`` is called with the URI and pymongo client options the
    first time ``db`` is read. A failed connection leaves the context empty so
    the next caller tries again.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        *,
        max_pool_size: int = 10,
        server_selection_timeout_ms: int = 5000,
        socket_timeout_ms: int = 30000,
        client_factory: Callable[..., MongoClient] = MongoClient,
    ):
        self.uri = uri
        self.db_name = db_name
        self._options = {
            "maxPoolSize": max_pool_size,
            "serverSelectionTimeoutMS": server_selection_timeout_ms,
            "socketTimeoutMS": socket_timeout_ms,
            "tz_aware": True,
        }
        self._client_factory = client_factory
        self._client: Optional[MongoClient] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "MongoContext":
        return cls(
            settings.mongodb_uri,
            settings.mongodb_db,
            max_pool_size=settings.mongodb_max_pool_size,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
            socket_timeout_ms=settings.mongodb_socket_timeout_ms,
            **kwargs,
        )

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def db(self) -> Database:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._connect()
        return self._client[self.db_name]

    def _connect(self) -> None:
        client = self._client_factory(self.uri, **self._options)
        try:
            ensure_indexes(client[self.db_name])
        except Exception:
            client.close()
            logger.error("mongo_connect_failed", db=self.db_name)
            raise
        self._client = client
        logger.info("mongo_connected", db=self.db_name)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("mongo_closed", db=self.db_name)


def get_db(request: Request) -> Database:
    return request.app.state.mongo.db


# ----------------------------
# Document helpers
# ----------------------------
def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = dict(data)
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = db[collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def serialize(value: Any) -> Any:
    """Render a stored document as JSON-ready data; password hashes never leave."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items() if k != "password"}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value
