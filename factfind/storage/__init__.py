"""
Storage backends for the fact-find service.
"""

import logging
from typing import Optional

from ..config import Settings
from .base import Storage, finalize_question, prepare_question
from .memory import MemoryStorage

logger = logging.getLogger(__name__)


def create_storage(settings: Optional[Settings] = None) -> Storage:
    """
    Build the storage backend for the given settings.

    SQLStorage when DATABASE_URL is set, MemoryStorage otherwise.
    """
    settings = settings or Settings.from_env()
    if settings.database_url:
        from .sql import SQLStorage

        logger.info("Using SQL storage")
        return SQLStorage(settings.database_url, timeout=settings.db_timeout)
    logger.info("DATABASE_URL not set, using in-memory storage")
    return MemoryStorage()


__all__ = [
    "Storage",
    "MemoryStorage",
    "create_storage",
    "finalize_question",
    "prepare_question",
]
