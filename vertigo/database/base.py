"""Base database class and connection management."""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger("vertigo-proxy")

# Base class for SQLAlchemy models
Base = declarative_base()


class DatabaseBase(ABC):
    """Abstract base class for database operations."""

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize database with configuration.

        Args:
            config: Database configuration dictionary.
        """
        self.config = config
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the name of the database backend."""

    @abstractmethod
    def get_connection_string(self) -> str:
        """Return the database connection string."""

    @abstractmethod
    def get_pool_options(self) -> dict[str, Any]:
        """Return engine keyword options for this backend."""

    def on_engine_created(self, engine: Engine) -> None:
        """Hook for backend-specific engine setup (event listeners etc.)."""

    def initialize(self) -> None:
        """Create the engine and session factory, then bootstrap the schema."""
        if self._engine is not None:
            return

        # Register models on Base.metadata before create_all
        from . import models  # noqa: F401

        connection_string = self.get_connection_string()
        logger.info(f"Initializing {self.backend_name} database connection")

        self._engine = create_engine(connection_string, **self.get_pool_options())
        self.on_engine_created(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        Base.metadata.create_all(self._engine)

        logger.info(f"{self.backend_name} database initialized successfully")

    def get_session(self) -> Session:
        """Get a new database session.

        Raises:
            RuntimeError: If database is not initialized.
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Context manager for database sessions.

        Yields:
            A database session that is committed on success and rolled back
            on any exception.
        """
        sess = self.get_session()
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    def close(self) -> None:
        """Close the database engine and release all connections."""
        if self._engine is not None:
            logger.info(f"Closing {self.backend_name} database connection")
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
