"""Database models for the durable conversation store."""

from .conversation import ConversationRecord, MessageRecord

__all__ = ["ConversationRecord", "MessageRecord"]
