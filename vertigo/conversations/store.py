"""Conversation history storage.

Two interchangeable backends satisfy the same contract:

- ``MemoryConversationStore`` keeps histories in process memory. Lookups and
  appends are O(1) amortised; history is lost on restart.
- ``DatabaseConversationStore`` persists histories through SQLAlchemy. Every
  append is one transaction that inserts a message row and bumps the
  conversation's ``last_updated``.

Both backends are synchronous and thread-safe. Async callers should offload
calls with ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.exceptions import StoreFailure
from ..database.base import DatabaseBase
from ..database.models import ConversationRecord, MessageRecord

logger = logging.getLogger("vertigo-proxy")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
VALID_ROLES = frozenset({ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM})


def new_conversation_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Naive UTC: SQLite DateTime columns drop tzinfo on the way back
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Message:
    """One conversation turn."""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")


@dataclass(frozen=True)
class Conversation:
    """A snapshot of a conversation's history at read time."""

    id: str
    messages: tuple[Message, ...] = ()
    last_updated: datetime = field(default_factory=_utcnow)


class ConversationStore(ABC):
    """Contract shared by all conversation store backends."""

    backend_name = "abstract"

    @abstractmethod
    def get(self, conversation_id: Optional[str]) -> Conversation:
        """Return the conversation, creating an empty one when unknown.

        An empty or None id creates a conversation under a generated id.

        Raises:
            StoreFailure: The backend could not be read.
        """

    @abstractmethod
    def append(self, conversation_id: str, role: str, content: str) -> None:
        """Append a message and set ``last_updated`` to now.

        Raises:
            StoreFailure: The backend could not be written.
        """

    @abstractmethod
    def delete(self, conversation_id: str) -> bool:
        """Remove a conversation and its messages. Returns False if unknown."""

    def close(self) -> None:
        """Release backend resources."""


class _MemoryEntry:
    __slots__ = ("lock", "messages", "last_updated")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.messages: list[Message] = []
        self.last_updated = _utcnow()


class MemoryConversationStore(ConversationStore):
    """Volatile, process-local conversation store."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._entries: dict[str, _MemoryEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, conversation_id: str) -> _MemoryEntry:
        with self._lock:
            entry = self._entries.get(conversation_id)
            if entry is None:
                entry = _MemoryEntry()
                self._entries[conversation_id] = entry
                logger.debug("Created conversation %s in memory", conversation_id)
            return entry

    def get(self, conversation_id: Optional[str]) -> Conversation:
        conversation_id = conversation_id or new_conversation_id()
        entry = self._entry(conversation_id)
        with entry.lock:
            return Conversation(
                id=conversation_id,
                messages=tuple(entry.messages),
                last_updated=entry.last_updated,
            )

    def append(self, conversation_id: str, role: str, content: str) -> None:
        if not conversation_id:
            raise StoreFailure("A conversation id is required to append")
        message = Message(role=role, content=content or "")
        entry = self._entry(conversation_id)
        with entry.lock:
            entry.messages.append(message)
            entry.last_updated = _utcnow()

    def delete(self, conversation_id: str) -> bool:
        with self._lock:
            return self._entries.pop(conversation_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DatabaseConversationStore(ConversationStore):
    """Durable conversation store on top of a SQLAlchemy database."""

    backend_name = "database"

    def __init__(self, database: DatabaseBase) -> None:
        self._database = database
        self._database.initialize()

    def get(self, conversation_id: Optional[str]) -> Conversation:
        conversation_id = conversation_id or new_conversation_id()
        try:
            return self._load_or_create(conversation_id)
        except IntegrityError:
            # A concurrent request created the row between our read and insert
            logger.debug("Conversation %s created concurrently; reloading", conversation_id)
            try:
                return self._load_or_create(conversation_id)
            except SQLAlchemyError as exc:
                raise StoreFailure(f"Failed to load conversation {conversation_id}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreFailure(f"Failed to load conversation {conversation_id}: {exc}") from exc

    def _load_or_create(self, conversation_id: str) -> Conversation:
        with self._database.session() as sess:
            record = sess.get(ConversationRecord, conversation_id)
            if record is None:
                now = _utcnow()
                sess.add(ConversationRecord(id=conversation_id, last_updated=now))
                sess.flush()
                logger.debug("Created conversation %s in database", conversation_id)
                return Conversation(id=conversation_id, messages=(), last_updated=now)

            rows = sess.execute(
                select(MessageRecord.role, MessageRecord.content)
                .where(MessageRecord.conversation_id == conversation_id)
                .order_by(MessageRecord.timestamp.asc(), MessageRecord.id.asc())
            ).all()
            return Conversation(
                id=conversation_id,
                messages=tuple(Message(role=row[0], content=row[1]) for row in rows),
                last_updated=record.last_updated,
            )

    def append(self, conversation_id: str, role: str, content: str) -> None:
        if not conversation_id:
            raise StoreFailure("A conversation id is required to append")
        message = Message(role=role, content=content or "")
        try:
            self._append(conversation_id, message)
        except IntegrityError:
            logger.debug("Conversation %s created concurrently; retrying append", conversation_id)
            try:
                self._append(conversation_id, message)
            except SQLAlchemyError as exc:
                raise StoreFailure(f"Failed to append to conversation {conversation_id}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreFailure(f"Failed to append to conversation {conversation_id}: {exc}") from exc

    def _append(self, conversation_id: str, message: Message) -> None:
        with self._database.session() as sess:
            now = _utcnow()
            record = sess.get(ConversationRecord, conversation_id)
            if record is None:
                # The parent row must exist before any message references it
                record = ConversationRecord(id=conversation_id, last_updated=now)
                sess.add(record)
                sess.flush()
            sess.add(
                MessageRecord(
                    conversation_id=conversation_id,
                    role=message.role,
                    content=message.content,
                    timestamp=now,
                )
            )
            record.last_updated = now

    def delete(self, conversation_id: str) -> bool:
        try:
            with self._database.session() as sess:
                sess.execute(
                    delete(MessageRecord).where(MessageRecord.conversation_id == conversation_id)
                )
                result = sess.execute(
                    delete(ConversationRecord).where(ConversationRecord.id == conversation_id)
                )
                return bool(result.rowcount)
        except SQLAlchemyError as exc:
            raise StoreFailure(f"Failed to delete conversation {conversation_id}: {exc}") from exc

    def close(self) -> None:
        self._database.close()


def build_conversation_store(
    backend: str = "memory",
    database_config: Optional[dict[str, Any]] = None,
) -> ConversationStore:
    """Create the configured store backend.

    Raises:
        ValueError: Unknown backend name.
    """
    normalized = (backend or "memory").strip().lower()
    if normalized == "memory":
        store: ConversationStore = MemoryConversationStore()
    elif normalized in ("database", "sqlite"):
        from ..database.factory import create_database

        store = DatabaseConversationStore(create_database(database_config))
    else:
        raise ValueError(
            f"Unsupported conversation store backend: {backend}. Supported: memory, database"
        )
    logger.info("Conversation store backend: %s", store.backend_name)
    return store
