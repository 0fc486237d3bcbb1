"""Server-side conversation history."""

from .store import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    Conversation,
    ConversationStore,
    DatabaseConversationStore,
    MemoryConversationStore,
    Message,
    build_conversation_store,
    new_conversation_id,
)

__all__ = [
    "ROLE_ASSISTANT",
    "ROLE_SYSTEM",
    "ROLE_USER",
    "Conversation",
    "ConversationStore",
    "DatabaseConversationStore",
    "MemoryConversationStore",
    "Message",
    "build_conversation_store",
    "new_conversation_id",
]
