"""vertigo - an OpenAI-compatible proxy for the Gemini API

Exposes the OpenAI chat, completions, embeddings and models endpoints and
forwards traffic to Gemini's native API, rotating across a pool of API keys
and optionally stitching server-side conversation history into requests.

Example:
    >>> from vertigo.main import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="127.0.0.1", port=8000)
"""

from .config_loader import load_config
from .core import CredentialPool, GeminiClient, ModelSelector, ProxyError
from .logging import setup_logging
from .main import create_app
from .orchestrator import ProxyOrchestrator

__all__ = [
    "CredentialPool",
    "GeminiClient",
    "ModelSelector",
    "ProxyError",
    "ProxyOrchestrator",
    "create_app",
    "load_config",
    "setup_logging",
]
