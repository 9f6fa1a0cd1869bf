"""
Database Helper Functions

MongoDB helpers shared by the route handlers. The database handle is always
passed in explicitly; connect() builds it from Settings at startup.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from starlette.requests import HTTPConnection

from config import Settings
from errors import InvalidData

logger = logging.getLogger(__name__)

USERS = "user"
POSTS = "post"
COMMENTS = "comment"
LIKES = "like"
TAGS = "tag"
MESSAGES = "message"
ADS = "ad"


def connect(settings: Settings) -> MongoClient:
    client = MongoClient(settings.db_url, serverSelectionTimeoutMS=2000)
    client.admin.command("ping")  # fail fast when unreachable
    logger.info("MongoDB connected (%s)", settings.db_name)
    return client


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back from the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_datetime(value: Optional[Union[date, datetime]]) -> Optional[datetime]:
    """BSON has no date type; store calendar dates as midnight datetimes."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def to_object_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise InvalidData("Invalid id", error=str(id_str))


def to_public(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    d.pop("password_hash", None)
    return d


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    """Insert a single document with timestamps and return it"""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", None)

    result = db[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return data_dict


def get_by_id(db: Database, collection_name: str, id_str: str) -> Optional[dict]:
    return db[collection_name].find_one({"_id": to_object_id(id_str)})


def get_db(conn: HTTPConnection) -> Database:
    return conn.app.state.db
