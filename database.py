"""
Database helpers

MongoDB access through pymongo. Collection names are the lowercase schema
names: "user", "alien", "cart", "order".
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from errors import ValidationFailed
from logging_config import get_logger

log = get_logger("database")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def connect(settings) -> Database:
    client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000, tz_aware=True)
    log.info("Using MongoDB database %r", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("is_admin")
    db["cart"].create_index("user_id", unique=True)
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index("order_status")
    db["order"].create_index("payment_status")
    for field in ("faction", "planet", "rarity", "price", "created_at"):
        db["alien"].create_index(field)
    db["alien"].create_index([("featured", ASCENDING), ("in_stock", ASCENDING)])


def get_db(request: Request) -> Database:
    return request.app.state.db


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise ValidationFailed("Invalid ID format", code="INVALID_ID")


def is_object_id(value: Any) -> bool:
    return ObjectId.is_valid(str(value))


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at; returns its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utc_now()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def update_document(db: Database, collection_name: str, doc_id: Any, changes: dict) -> Optional[dict]:
    """Apply $set changes and return the updated document (None when missing)."""
    changes = dict(changes)
    changes["updated_at"] = utc_now()
    return db[collection_name].find_one_and_update(
        {"_id": oid(doc_id)},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
