"""Conversation and message tables for the durable conversation store."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from ..base import Base


class ConversationRecord(Base):
    """One row per conversation id."""

    __tablename__ = "conversations"

    id = Column(
        String(128),
        primary_key=True,
        comment="Client-supplied or generated conversation identifier",
    )

    last_updated = Column(
        DateTime,
        nullable=False,
        comment="Time of the most recent append (UTC)",
    )


class MessageRecord(Base):
    """One row per appended message, ordered by timestamp then id."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)

    conversation_id = Column(
        String(128),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning conversation",
    )

    role = Column(String(16), nullable=False, comment="user, assistant or system")

    content = Column(Text, nullable=False, default="")

    timestamp = Column(
        DateTime,
        nullable=False,
        comment="Append time (UTC)",
    )

    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )
