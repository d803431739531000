"""
MongoDB access for the API.

``db`` is None when DATABASE_URL / DATABASE_NAME are not set; route handlers
receive the database through the ``get_db`` dependency so tests can swap in
an in-memory client.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
        db = _client[DATABASE_NAME]
    except Exception:
        logger.exception("Could not create MongoDB client")
        db = None


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def now():
    # Naive UTC, matching what pymongo hands back on reads.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any, entity: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {entity} id")


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    ts = now()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict] = None,
                  limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_or_404(database, collection_name: str, doc_id: Any, entity: str) -> dict:
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, entity.lower())})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{entity} not found")
    return doc


UNIQUE_INDEXES = {
    "user": ["email"],
    "category": ["name"],
    "coupon": ["code"],
    "tag": ["slug"],
    "product_type": ["slug"],
    "seller": ["email"],
    "supplier": ["email"],
    "warehouse": ["warehouse_id"],
    "subscription_plan": ["name"],
    "user_subscription": ["user_id"],
    "withdrawal": ["withdrawal_id"],
    "feature": ["name"],
}


def ensure_indexes(database):
    for collection, fields in UNIQUE_INDEXES.items():
        for field in fields:
            database[collection].create_index(field, unique=True)
    database["product"].create_index([("created_at", -1), ("_id", -1)])
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["order"].create_index("order_number", unique=True)
    database["review"].create_index([("product_id", 1), ("user_id", 1)], unique=True)
    database["transaction"].create_index("order_id")
    database["cart"].create_index("user_id", unique=True)
