"""
Document store access.

A single MongoDB database is shared by the whole service. Collection names
are the lowercase of the schema class name (see ``schemas.py``).
"""
from datetime import datetime, timezone
from typing import Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

import config
from errors import NotFound, PersistenceError

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]

def get_db() -> Database:
    if db is None:
        raise PersistenceError("Database not available")
    return db

def now() -> datetime:
    return datetime.now(timezone.utc)

def to_object_id(id_str: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")

def create_document(database: Database, collection_name: str, data) -> str:
    """Insert ``data`` (a model or a dict) stamped with created/updated times."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="json")
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc
