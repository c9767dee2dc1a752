"""
MongoDB access helpers.

Each Pydantic schema in ``schemas.py`` maps to one collection whose name is the
lowercased class name (``Order`` -> ``"order"``).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL is not set, database features are disabled")


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def _resolve(database):
    return database if database is not None else get_db()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless tz_aware is set
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(collection_name: str, data: Union[BaseModel, dict], db=None) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = _resolve(db)[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, db=None):
    cursor = _resolve(db)[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: str, label: str = "Resource") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=f"{label} not found")


def _convert(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return _convert(doc)


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["vendor"].create_index("user_id", unique=True)
    database["product"].create_index("vendor_id")
    database["product"].create_index("categories")
    database["product"].create_index("status")
    database["order"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("items.vendor_id")
    database["order"].create_index("status")
    database["order"].create_index(
        [("customer_id", ASCENDING), ("idempotency_key", ASCENDING)], unique=True
    )
    database["deliveryproof"].create_index(
        [("order_id", ASCENDING), ("vendor_id", ASCENDING)], unique=True
    )
    database["bankaccount"].create_index("user_id", unique=True)
    logger.info("MongoDB indexes ensured on %s", database.name)
