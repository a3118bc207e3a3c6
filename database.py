"""
MongoDB access helpers.

The application never holds a module-level connection: the entry point builds
a client with ``connect`` and hands the resulting ``Database`` to the app
factory, which in turn passes it to the stores.

Datetimes are stored as naive UTC (what BSON round-trips to) and come back
out as timezone-aware UTC through ``from_storage``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings

logger = logging.getLogger("maintenance_tracker.database")

USERS = "user"
TASKS = "task"
SESSIONS = "session"
META = "meta"


def connect(settings: Settings) -> MongoClient:
    logger.info(f"Opening MongoDB client | database={settings.database_name}")
    return MongoClient(settings.database_url)


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("role", ASCENDING)])
    db[TASKS].create_index([("owner_id", ASCENDING)])
    db[TASKS].create_index([("assignee_id", ASCENDING)])
    db[SESSIONS].create_index([("token", ASCENDING)], unique=True)
    db[SESSIONS].create_index([("user_id", ASCENDING)])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_storage(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    # BSON dates carry millisecond precision
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def from_storage(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a URL or token; None when it can't name a document."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = to_storage(utcnow())
    doc = {**data, "created_at": now, "updated_at": now}
    res = db[collection].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    return list(db[collection].find(filter_dict or {}, projection))
