"""Storage backends for error groups and events."""

from error_tracking.storage.base import ErrorStorage, StorageError, UPDATABLE_GROUP_FIELDS
from error_tracking.storage.memory import InMemoryErrorStorage
from error_tracking.storage.mysql import MySQLErrorStorage
from error_tracking.utils.logging import get_logger

logger = get_logger(__name__)


def get_error_storage() -> ErrorStorage:
    """
    Create the error storage selected by settings.

    Returns:
        MySQLErrorStorage when DATABASE_URL is set, InMemoryErrorStorage otherwise
    """
    from error_tracking.config import settings

    if settings.database_url:
        return MySQLErrorStorage(settings.database_url)

    logger.info("DATABASE_URL not set, using in-process error storage")
    return InMemoryErrorStorage(lock_shards=settings.storage_lock_shards)


__all__ = [
    "ErrorStorage",
    "StorageError",
    "UPDATABLE_GROUP_FIELDS",
    "InMemoryErrorStorage",
    "MySQLErrorStorage",
    "get_error_storage",
]
