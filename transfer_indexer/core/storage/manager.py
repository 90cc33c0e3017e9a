"""
Storage factory selecting the configured backend.
"""

import logging
from typing import Optional

from ...config import ConfigError, ConfigManager
from .base import IndexerStorage
from .memory import MemoryStorage
from .postgres import PostgresStorage

logger = logging.getLogger(__name__)

BACKENDS = ("postgres", "memory")


def create_storage(config: Optional[ConfigManager] = None) -> IndexerStorage:
    """
    Build the storage backend named by ``STORAGE_BACKEND``.

    Args:
        config: Configuration manager instance (creates default if None)

    Returns:
        Unconnected storage backend
    """
    config = config or ConfigManager()
    backend = config.database.STORAGE_BACKEND.lower()

    if backend == "memory":
        logger.info("Using in-memory storage backend")
        return MemoryStorage()

    if backend == "postgres":
        kwargs = config.database.get_postgres_connection_kwargs()
        if not kwargs["dsn"]:
            raise ConfigError("PostgreSQL backend selected but no DATABASE_URL or POSTGRES_USER set")
        return PostgresStorage(kwargs)

    raise ConfigError(f"Unknown storage backend: {backend} (expected one of {', '.join(BACKENDS)})")
