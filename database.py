"""
MongoDB connection

`db` stays None when DATABASE_URL / DATABASE_NAME are not configured; routes
reach the database through the `get_db` dependency so tests can swap it.
"""

import logging
from typing import Any, Dict

from bson import ObjectId
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME
from errors import InternalError

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")


def get_db():
    if db is None:
        raise InternalError("Database not available")
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["product"].create_index([("seller_id", 1), ("is_active", 1)])
    database["product"].create_index([("type", 1), ("category", 1), ("is_active", 1)])
    database["order"].create_index("order_id", unique=True)
    database["order"].create_index([("buyer_id", 1), ("created_at", -1)])
    database["order"].create_index([("seller_id", 1), ("created_at", -1)])
    database["order"].create_index([("order_status.current", 1), ("created_at", -1)])


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
