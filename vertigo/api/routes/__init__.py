"""API routes for the proxy."""

from .chat import chat_completions
from .completions import completions
from .conversations import delete_conversation
from .embeddings import embeddings
from .models import get_model, list_models

__all__ = [
    "chat_completions",
    "completions",
    "delete_conversation",
    "embeddings",
    "get_model",
    "list_models",
]
