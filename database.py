"""
Database access

MongoDB through pymongo. Collections are named after the lowercase
document kind (``product``, ``order``, ``review``, ``user``, ``counter``).

Stock counters live inside ``product.sizes`` and are only ever changed
with the single-statement conditional updates below, never read and then
written back.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

import config
from errors import NotFound, UpstreamFailure

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def connect() -> Optional[Database]:
    global _client, _db
    if _db is None and config.DATABASE_URL and config.DATABASE_NAME:
        _client = MongoClient(config.DATABASE_URL)
        _db = _client[config.DATABASE_NAME]
        ensure_indexes(_db)
        logger.info("Connected to database %s", config.DATABASE_NAME)
    return _db


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    db = connect()
    if db is None:
        raise UpstreamFailure("Database not configured")
    return db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["product"].create_index("slug", unique=True)
    db["product"].create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index("payment.gateway_ref")
    db["order"].create_index("reservation")
    db["review"].create_index([("user", ASCENDING), ("product", ASCENDING)], unique=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, entity: str) -> ObjectId:
    """Parse an id coming from a request; malformed ids cannot exist, so they are NotFound."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(entity, value)


def serialize(value: Any) -> Any:
    """Make a document JSON friendly: ObjectIds become strings and ``_id`` becomes ``id``."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize(item)
        return out
    if isinstance(value, list):
        return [serialize(item) for item in value]
    return value


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    doc["_id"] = db[collection_name].insert_one(doc).inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
    skip: int = 0,
    limit: Optional[int] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def next_sequence(db: Database, name: str) -> int:
    counter = db["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def decrement_stock(db: Database, product_id: ObjectId, volume: str, quantity: int,
                    hold: Optional[str] = None) -> bool:
    """
    Take ``quantity`` units from one size of a product.

    The stock condition is part of the update filter, so the decrement only
    happens when enough units remain at the moment of the write. Returns
    False when it did not apply.

    With a ``hold`` token the token is recorded on the product in the same
    write, and a product already carrying that token is left alone. Whoever
    holds the token can later tell whether the units were taken.
    """
    query: Dict[str, Any] = {
        "_id": product_id,
        "sizes": {"$elemMatch": {"volume": volume, "stock": {"$gte": quantity}}},
    }
    update: Dict[str, Any] = {"$inc": {"sizes.$.stock": -quantity}}
    if hold is not None:
        query["stock_holds"] = {"$ne": hold}
        update["$addToSet"] = {"stock_holds": hold}
    result = db["product"].update_one(query, update)
    return result.matched_count == 1


def increment_stock(db: Database, product_id: ObjectId, volume: str, quantity: int) -> bool:
    result = db["product"].update_one(
        {"_id": product_id, "sizes": {"$elemMatch": {"volume": volume}}},
        {"$inc": {"sizes.$.stock": quantity}},
    )
    return result.matched_count == 1


def release_hold(db: Database, product_id: ObjectId, volume: str, quantity: int, hold: str) -> bool:
    """Give back units taken under ``hold``; does nothing unless the product still carries the token."""
    result = db["product"].update_one(
        {"_id": product_id, "stock_holds": hold, "sizes": {"$elemMatch": {"volume": volume}}},
        {"$inc": {"sizes.$.stock": quantity}, "$pull": {"stock_holds": hold}},
    )
    return result.matched_count == 1


def clear_holds(db: Database, product_ids: List[ObjectId], holds: List[str]) -> None:
    db["product"].update_many({"_id": {"$in": product_ids}}, {"$pullAll": {"stock_holds": holds}})
