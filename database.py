"""
MongoDB access: client/database handles, collection names, index setup and
the small document helpers shared by the services.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import InvalidArgument

logger = logging.getLogger(__name__)

USERS = "users"
VIDEOS = "videos"
SUBSCRIPTIONS = "subscriptions"
LIKES = "likes"
COMMENTS = "comments"


@lru_cache()
def get_client() -> MongoClient:
    settings = get_settings()
    return MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=settings.DATABASE_TIMEOUT_MS)


def get_db() -> Database:
    return get_client()[get_settings().DATABASE_NAME]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[VIDEOS].create_index([("owner", ASCENDING)])
    db[SUBSCRIPTIONS].create_index([("subscriber", ASCENDING), ("channel", ASCENDING)], unique=True)
    db[SUBSCRIPTIONS].create_index([("channel", ASCENDING)])
    db[LIKES].create_index([("video", ASCENDING), ("likedBy", ASCENDING)], unique=True)
    db[COMMENTS].create_index([("video", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", db.name)


def create_document(db: Database, collection_name: str, data: dict) -> dict:
    """Insert a document stamped with createdAt/updatedAt and return it with its _id."""
    now = datetime.utcnow()
    doc = {**data, "createdAt": now, "updatedAt": now}
    doc["_id"] = db[collection_name].insert_one(doc).inserted_id
    return doc


def is_valid_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def objid(id_str: Any, field: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not is_valid_id(id_str):
        raise InvalidArgument(f"Invalid {field}")
    return ObjectId(id_str)


def to_str_id(doc: Any) -> Any:
    """Make a document JSON friendly: _id -> id, ObjectId -> str, datetime -> isoformat."""
    if isinstance(doc, dict):
        d = {}
        for k, v in doc.items():
            d["id" if k == "_id" else k] = to_str_id(v)
        return d
    if isinstance(doc, (list, tuple)):
        return [to_str_id(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc
