"""
MongoDB access for the store.

`db` is the module-level database handle (None when DATABASE_URL is not set).
Code should reach collections through `collection()` so tests can swap `db`.
"""
import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ingaa_store")
USE_TRANSACTIONS = os.getenv("DATABASE_TRANSACTIONS", "0") == "1"

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def collection(name: str):
    if db is None:
        raise RuntimeError("Database not configured (set DATABASE_URL)")
    return db[name]


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a path id; malformed ids are treated as missing."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], session=None) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    now = datetime.now(timezone.utc)
    doc = {**data, "created_at": now, "updated_at": now}
    res = collection(collection_name).insert_one(doc, session=session)
    return str(res.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, sort=None) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return [serialize(d) for d in cursor]


def ensure_indexes() -> None:
    collection("category").create_index("slug", unique=True)
    collection("category").create_index("display_order")
    collection("user").create_index("email", unique=True)
    collection("product").create_index("category_id")
    collection("product").create_index([("featured", DESCENDING), ("created_at", DESCENDING)])
    collection("review").create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    collection("cart_item").create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    collection("wishlist_item").create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    collection("order").create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    collection("session").create_index("expires_at", expireAfterSeconds=0)
    logger.info("Indexes ensured on %s", getattr(db, "name", DATABASE_NAME))


@contextmanager
def transaction():
    """Yield a client session inside a transaction, or None when transactions are off."""
    if not USE_TRANSACTIONS or client is None:
        yield None
        return
    with client.start_session() as session:
        with session.start_transaction():
            yield session
