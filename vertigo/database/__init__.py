"""Database support module.

Provides the SQLAlchemy engine/session lifecycle used by the durable
conversation store.
"""

from .base import Base, DatabaseBase
from .factory import create_database

__all__ = ["Base", "DatabaseBase", "create_database"]
