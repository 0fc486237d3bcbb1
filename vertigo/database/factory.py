"""Database factory for creating database instances from configuration."""

import logging
from typing import Any, Optional

from .base import DatabaseBase
from .sqlite import DEFAULT_SQLITE_PATH, SQLiteDatabase

logger = logging.getLogger("vertigo-proxy")

DEFAULT_DATABASE_CONFIG: dict[str, Any] = {
    "backend": "sqlite",
    "connection": {"sqlite": {"path": DEFAULT_SQLITE_PATH}},
}


def create_database(config: Optional[dict[str, Any]] = None) -> DatabaseBase:
    """Create a database instance based on configuration.

    Each call returns a new, uninitialized instance; the caller owns it.

    Args:
        config: Database configuration dictionary. If None, uses the default
            SQLite configuration.

    Raises:
        ValueError: If an unsupported database backend is specified.
    """
    if config is None:
        config = DEFAULT_DATABASE_CONFIG

    backend = str(config.get("backend", "sqlite")).lower()

    if backend == "sqlite":
        instance = SQLiteDatabase(config)
    else:
        raise ValueError(f"Unsupported database backend: {backend}. Supported backends: sqlite")

    logger.info(f"Database factory created {backend} database instance")
    return instance
