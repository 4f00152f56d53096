"""
MongoDB connection and small document helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, database disabled")


def now_utc():
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    doc = data.model_dump(by_alias=True) if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("created_at", now_utc())
    doc["updated_at"] = now_utc()
    res = target[collection_name].insert_one(doc)
    return str(res.inserted_id)


