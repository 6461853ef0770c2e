"""
Database helpers

MongoDB connection plus the small create/read helpers used by the rest of
the app. When DATABASE_URL / DATABASE_NAME are not set, `db` stays None and
the app falls back to the in-memory store.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(database_url: Optional[str], database_name: Optional[str]) -> Optional[Database]:
    global _client, db
    if not database_url or not database_name:
        return None
    _client = MongoClient(database_url)
    db = _client[database_name]
    return db


connect(os.getenv("DATABASE_URL"), os.getenv("DATABASE_NAME"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def id_filter(doc_id: str) -> Dict[str, Any]:
    """Match a document by id, accepting both ObjectId and plain string ids."""
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [ObjectId(doc_id), doc_id]}}
    return {"_id": doc_id}


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = data_dict.get("created_at") or now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    database: Optional[Database] = None,
) -> List[dict]:
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
