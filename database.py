"""
Database helpers

Thin layer over pymongo: the shared `db` handle, document creation and
lookup helpers, and conversion of stored documents to JSON-friendly dicts.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import settings
from errors import ValidationError

logger = structlog.get_logger(__name__)

_client = None
db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    _client = MongoClient(settings.DATABASE_URL)
    db = _client[settings.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the active database handle."""
    if db is None:
        raise RuntimeError("Database not configured: set DATABASE_URL and DATABASE_NAME")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes that are implicitly UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_object_id(value: str, label: str = "id") -> ObjectId:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(value)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Any) -> Any:
    """Convert ObjectIds (at any depth) to strings and `_id` to `id`."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, datetime):
        return as_utc(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v)
    return out


def ensure_indexes(database: Database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    # Sparse: accounts without a username carry no username key at all.
    database["user"].create_index([("username", ASCENDING)], unique=True, sparse=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["artwork"].create_index([("artist_id", ASCENDING)])
    database["shippingaddress"].create_index([("user_id", ASCENDING)])
    logger.info("indexes_ensured", database=database.name)
