"""
Database helpers

MongoDB connection and small generic helpers used by the repositories.
The connection is created once from DATABASE_URL / DATABASE_NAME; when either
is missing `db` stays None and callers report the store as unavailable.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = _client[config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, database disabled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document, stamping created_at / updated_at. Returns the new id as a string."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not initialized")

    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)

    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now

    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[list] = None,
    database=None,
) -> list[dict[str, Any]]:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not initialized")

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
