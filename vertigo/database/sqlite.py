"""SQLite database implementation."""

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool, StaticPool

from .base import DatabaseBase

logger = logging.getLogger("vertigo-proxy")

DEFAULT_SQLITE_PATH = "data/vertigo.db"


class SQLiteDatabase(DatabaseBase):
    """SQLite database implementation."""

    @property
    def backend_name(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> str:
        sqlite_config = self.config.get("connection", {}).get("sqlite", {})
        return str(sqlite_config.get("path", DEFAULT_SQLITE_PATH))

    def get_connection_string(self) -> str:
        """Return the SQLite connection string for SQLAlchemy."""
        db_path = self.db_path

        if db_path == ":memory:":
            logger.debug("SQLite database: in-memory")
            return "sqlite:///:memory:"

        # Relative paths resolve against the project root
        path = Path(db_path)
        if not path.is_absolute():
            path = Path(__file__).parent.parent.parent / path
        path.parent.mkdir(parents=True, exist_ok=True)

        logger.debug(f"SQLite database path: {path}")
        return f"sqlite:///{path}"

    def get_pool_options(self) -> dict[str, Any]:
        # In-memory SQLite needs StaticPool to share the database across connections
        if self.db_path == ":memory:":
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }

        # File-based SQLite uses NullPool to avoid locking issues
        return {
            "poolclass": NullPool,
            "connect_args": {"check_same_thread": False},
        }

    def on_engine_created(self, engine: Engine) -> None:
        # SQLite ignores REFERENCES clauses unless enabled per connection
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    def initialize(self) -> None:
        if self._engine is not None:
            return
        super().initialize()
        logger.info(f"SQLite database initialized at: {self.db_path}")
