"""Core module initialization."""

from .credentials import CredentialPool, CredentialStatus, mask_credential
from .exceptions import (
    ConfigurationError,
    ConversationNotFoundError,
    MalformedRequestError,
    ModelNotFoundError,
    NoCredentialAvailable,
    ProxyError,
    StoreFailure,
    TranslationFailure,
    UpstreamFailure,
)
from .model_selector import ModelSelector
from .upstream import GeminiClient, UpstreamStream

__all__ = [
    "ConfigurationError",
    "ConversationNotFoundError",
    "CredentialPool",
    "CredentialStatus",
    "GeminiClient",
    "MalformedRequestError",
    "ModelNotFoundError",
    "ModelSelector",
    "NoCredentialAvailable",
    "ProxyError",
    "StoreFailure",
    "TranslationFailure",
    "UpstreamFailure",
    "UpstreamStream",
    "mask_credential",
]
