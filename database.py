import os
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger("database")
logging.basicConfig(level=logging.INFO)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "farmledger")

COL_ADMINS = "administrator"
COL_FARMERS = "farmer"
COL_WORK = "work"

_client = MongoClient(DATABASE_URL)
db = _client[DATABASE_NAME]


def _collection(name: str) -> Collection:
    return db[name]


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc: Any) -> Any:
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


def ensure_indexes() -> None:
    try:
        _collection(COL_ADMINS).create_index([("username", ASCENDING)], unique=True)
        _collection(COL_FARMERS).create_index([("phone", ASCENDING)], unique=True)
        _collection(COL_WORK).create_index([("farmer_id", ASCENDING), ("created_at", ASCENDING)])
    except PyMongoError as e:
        logger.exception("Mongo index creation failed: %s", e)
        raise


def create_document(collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        now = datetime.utcnow()
        data.setdefault("created_at", now)
        data["updated_at"] = now
        res = _collection(collection_name).insert_one(data)
        data["_id"] = res.inserted_id
        return data
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.exception("Mongo insert failed: %s", e)
        raise


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    try:
        cursor = _collection(collection_name).find(filter_dict or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
    except PyMongoError as e:
        logger.exception("Mongo query failed: %s", e)
        raise


def get_one(
    collection_name: str,
    filter_dict: Dict[str, Any],
    projection: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    try:
        return _collection(collection_name).find_one(filter_dict, projection)
    except PyMongoError as e:
        logger.exception("Mongo query failed: %s", e)
        raise


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    try:
        return _collection(collection_name).count_documents(filter_dict or {})
    except PyMongoError as e:
        logger.exception("Mongo count failed: %s", e)
        raise


def update_document(collection_name: str, filter_dict: Dict[str, Any], update: Dict[str, Any]) -> int:
    """Apply ``update`` to the first matching document; return the matched count."""
    try:
        update.setdefault("$set", {})
        update["$set"]["updated_at"] = datetime.utcnow()
        res = _collection(collection_name).update_one(filter_dict, update)
        return res.matched_count
    except PyMongoError as e:
        logger.exception("Mongo update failed: %s", e)
        raise


def delete_documents(collection_name: str, filter_dict: Dict[str, Any]) -> int:
    try:
        res = _collection(collection_name).delete_many(filter_dict)
        return res.deleted_count
    except PyMongoError as e:
        logger.exception("Mongo delete failed: %s", e)
        raise
