"""
Database access

A single MongoClient is shared by the process. Route handlers receive the
database through the `get_db` dependency so tests can swap it for an
in-memory one.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from embroidery_store import config

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

try:
    client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[config.DATABASE_NAME]
except PyMongoError as e:
    logger.error("Unable to create MongoDB client: %s", e)


def get_db() -> Database:
    return db


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a document with timestamps and return it with its `_id`."""
    now = datetime.now(timezone.utc)
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def next_sequence(database: Database, name: str) -> int:
    counter = database["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"sequence_value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["sequence_value"])


def ensure_indexes(database: Database) -> None:
    try:
        database["customer"].create_index([("email", ASCENDING)], unique=True)
        database["admin"].create_index([("username", ASCENDING)], unique=True)
        database["admin"].create_index([("email", ASCENDING)], unique=True)
        database["role"].create_index([("name", ASCENDING)], unique=True)
        database["product"].create_index([("sku", ASCENDING)], unique=True)
        database["product"].create_index([("status", ASCENDING), ("viewed", DESCENDING)])
        database["cart"].create_index([("customer_id", ASCENDING)], unique=True)
        database["wishlist"].create_index([("customer_id", ASCENDING)], unique=True)
        database["wallet"].create_index([("customer_id", ASCENDING)], unique=True)
        database["wallet_transaction"].create_index(
            [("reference_id", ASCENDING)], unique=True, partialFilterExpression={"type": "CREDIT"},
        )
        database["review"].create_index([("product_id", ASCENDING), ("customer_id", ASCENDING)], unique=True)
        database["order"].create_index([("customer_id", ASCENDING), ("order_status", ASCENDING)])
        database["order"].create_index([("created_at", DESCENDING)])
        database["popup"].create_index([("status", ASCENDING), ("sort_order", ASCENDING)])
        database["search_log"].create_index([("created_at", DESCENDING)])
        database["online_user"].create_index([("customer_id", ASCENDING)], unique=True)
        database["audit_log"].create_index([("created_at", DESCENDING)])
    except PyMongoError as e:
        logger.warning("Unable to ensure indexes: %s", e)
