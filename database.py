"""
Database Helper Functions

MongoDB helper functions used by the API endpoints. The connection is
configured from the DATABASE_URL and DATABASE_NAME environment variables
(a local .env file is loaded if present).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set; database operations are disabled")


def _require_db():
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def _object_id(document_id: str) -> Optional[ObjectId]:
    if isinstance(document_id, ObjectId):
        return document_id
    if not ObjectId.is_valid(document_id):
        return None
    return ObjectId(document_id)


def _as_dict(data: Union[BaseModel, dict], **dump_options) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(**dump_options)
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps and return its id"""
    database = _require_db()
    data_dict = _as_dict(data)
    stamp = datetime.now(timezone.utc)
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
) -> List[dict]:
    """Get documents from collection"""
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, document_id: str) -> Optional[dict]:
    """Get one document by id, None if the id is malformed or unknown"""
    database = _require_db()
    oid = _object_id(document_id)
    if oid is None:
        return None
    return database[collection_name].find_one({"_id": oid})


def update_document(collection_name: str, document_id: str, data: Union[BaseModel, dict]) -> bool:
    """Set the given fields on one document; False if it does not exist"""
    database = _require_db()
    oid = _object_id(document_id)
    if oid is None:
        return False
    changes = _as_dict(data, exclude_unset=True)
    changes["updated_at"] = datetime.now(timezone.utc)
    result = database[collection_name].update_one({"_id": oid}, {"$set": changes})
    return result.matched_count > 0


def update_documents(collection_name: str, filter_dict: dict, changes: dict) -> int:
    """Set the given fields on every matching document; returns the match count"""
    database = _require_db()
    changes = dict(changes, updated_at=datetime.now(timezone.utc))
    result = database[collection_name].update_many(filter_dict, {"$set": changes})
    return result.matched_count


def delete_document(collection_name: str, document_id: str) -> bool:
    database = _require_db()
    oid = _object_id(document_id)
    if oid is None:
        return False
    result = database[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: dict) -> int:
    database = _require_db()
    result = database[collection_name].delete_many(filter_dict)
    return result.deleted_count
