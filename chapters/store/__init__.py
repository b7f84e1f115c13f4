"""Persistence backends for the book club.

create_store() picks MongoDB when MONGODB_URI is configured and falls
back to the in-memory store (data lost on restart) otherwise.
"""

from __future__ import annotations

import logging
from typing import Optional

from chapters import config
from chapters.store.base import CycleStore
from chapters.store.memory import InMemoryStore
from chapters.store.mongo import MongoStore

logger = logging.getLogger(__name__)

__all__ = ["CycleStore", "InMemoryStore", "MongoStore", "create_store"]


def create_store(uri: Optional[str] = None, db_name: Optional[str] = None) -> CycleStore:
    uri = config.MONGODB_URI if uri is None else uri
    if not uri:
        logger.warning("MONGODB_URI not set; using in-memory store (data is lost on restart)")
        return InMemoryStore()
    return MongoStore.from_uri(uri, db_name or config.MONGODB_DB_NAME)
