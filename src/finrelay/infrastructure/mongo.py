from __future__ import annotations

import logging
import os
from typing import Any, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database


logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def store_impl() -> str:
    """Storage backend for registry and transcripts: ``mongo`` or ``memory``."""

    if os.getenv("DB_MODE", "").lower() == "mongo":
        return "mongo"
    return os.getenv("FINRELAY_STORE_IMPL", "memory").lower()


def connect() -> Optional[Database]:
    """Return the configured database, or ``None`` when MongoDB is unreachable."""

    global _client
    mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "finrelay")
    try:
        if _client is None:
            _client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
        # Trigger server selection
        _client.server_info()
        return _client[mongo_db]
    except Exception:
        logger.warning("MongoDB unreachable at %s; falling back to in-memory storage", mongo_url)
        _client = None
        return None


def next_id(db: Database, counter: str) -> int:
    doc: Any = db["counters"].find_one_and_update(
        {"_id": counter},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])
