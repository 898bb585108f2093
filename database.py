"""
MongoDB access for the Ratings Platform.

Collections: `user`, `store`, `rating` (see schemas.py). The client is created
lazily so importing the app never opens a connection.
"""

import logging
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def ensure_indexes(database: Database) -> None:
    """Create the uniqueness constraints the API relies on."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    # one store per owner
    database["store"].create_index([("owner_id", ASCENDING)], unique=True)
    # one rating per user per store
    database["rating"].create_index(
        [("user_id", ASCENDING), ("store_id", ASCENDING)], unique=True
    )


def get_db() -> Database:
    """FastAPI dependency returning the application database."""
    global _client, _db
    if _db is None:
        _client = MongoClient(settings.MONGO_URL)
        _db = _client[settings.DATABASE_NAME]
        ensure_indexes(_db)
        logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    return _db
