"""MongoDB database service for users, API keys and parking records.

Provides functions for connecting to MongoDB, creating the indexes the
lookups rely on and issuing integer ids from a counters collection.
"""

import logging
from typing import Any

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pydantic import BaseModel

from trackme.config import get_settings

logger = logging.getLogger(__name__)

# Global MongoDB client instance
_client: MongoClient | None = None


def get_client() -> MongoClient:
    """Get or create the MongoDB client singleton.

    Returns:
        MongoClient instance.
    """
    global _client
    if _client is None:
        settings = get_settings()
        logger.info("Connecting to MongoDB...")
        _client = MongoClient(settings.mongo.uri, tz_aware=True)
        logger.info("MongoDB connection established")
    return _client


def set_client(client: MongoClient | None) -> None:
    """Install an already constructed client (used by tests and scripts)."""
    global _client
    _client = client


def get_database() -> Database:
    """Get the TrackMe database.

    Returns:
        Database instance for TrackMe data.
    """
    settings = get_settings()
    client = get_client()
    return client[settings.mongo.db_name]


def get_collection(name: str) -> Collection:
    """Get a collection by name from the TrackMe database.

    Args:
        name: Collection name.

    Returns:
        Collection instance.
    """
    db = get_database()
    return db[name]


def ensure_indexes() -> None:
    """Create database indexes for lookups and uniqueness.

    Creates indexes on:
    - users: (email) unique
    - api_keys: (keyHash) unique for verification, (userId) for listings
    - parkings: (userId, createdAt) for latest position and history
    """
    settings = get_settings()
    db = get_database()

    logger.info("Ensuring database indexes...")

    users_col = db[settings.mongo.users_collection]
    users_col.create_index(
        [("email", ASCENDING)],
        name="email_unique",
        unique=True,
    )

    api_keys_col = db[settings.mongo.api_keys_collection]
    api_keys_col.create_index(
        [("keyHash", ASCENDING)],
        name="key_hash_unique",
        unique=True,
    )
    api_keys_col.create_index(
        [("userId", ASCENDING), ("createdAt", DESCENDING)],
        name="user_created_idx",
    )

    parkings_col = db[settings.mongo.parkings_collection]
    parkings_col.create_index(
        [("userId", ASCENDING), ("createdAt", DESCENDING)],
        name="user_created_idx",
    )

    logger.info("Database indexes created successfully")


def next_id(sequence: str) -> int:
    """Atomically increment and return the counter for a sequence.

    Args:
        sequence: Counter name, usually the collection it numbers.

    Returns:
        Next integer id, starting at 1.
    """
    settings = get_settings()
    col = get_collection(settings.mongo.counters_collection)

    counter = col.find_one_and_update(
        {"_id": sequence},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["value"])


def close_client() -> None:
    """Close the MongoDB client connection gracefully."""
    global _client
    if _client is not None:
        logger.info("Closing MongoDB connection...")
        _client.close()
        _client = None
        logger.info("MongoDB connection closed")


def to_document(model: BaseModel) -> dict[str, Any]:
    """Dump a model with an ``id`` field into a MongoDB document."""
    document = model.model_dump(by_alias=True, exclude={"id"})
    document["_id"] = model.id
    return document
