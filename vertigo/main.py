"""Main FastAPI application for the vertigo proxy."""

import logging
import socket
import time
from typing import Any, Optional

import httpx
from fastapi import FastAPI

from .api.routes import (
    chat_completions,
    completions,
    delete_conversation,
    embeddings,
    get_model,
    list_models,
)
from .config_loader import load_config
from .conversations import ConversationStore, build_conversation_store
from .core.credentials import CredentialPool
from .core.exceptions import ConfigurationError
from .core.model_selector import ModelSelector
from .core.upstream import GeminiClient
from .middleware import RequestLoggingMiddleware
from .orchestrator import ProxyOrchestrator
from .settings import Settings, parse_settings

logger = logging.getLogger("vertigo-proxy")

# Azure-style clients expect the API under /openai as well
ROUTE_PREFIXES = ("", "/openai")


def build_orchestrator(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProxyOrchestrator:
    """Wire the pool, selector, upstream client and store from settings."""
    try:
        pool = CredentialPool(settings.gemini.api_keys)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    selector = ModelSelector(
        alias=settings.models.alias,
        tiers=dict(settings.models.tiers),
        legacy_completion_model=settings.models.legacy_completion_model,
        embedding_model=settings.models.embedding_model,
    )
    client = GeminiClient(
        base_url=settings.gemini.base_url,
        api_version=settings.gemini.api_version,
        timeout=settings.gemini.request_timeout,
        transport=transport,
    )

    store: Optional[ConversationStore] = None
    if settings.conversations.enabled:
        try:
            store = build_conversation_store(
                settings.conversations.backend, settings.conversations.database
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    return ProxyOrchestrator(
        pool=pool,
        selector=selector,
        client=client,
        store=store,
        quarantine_seconds=settings.gemini.quarantine_seconds,
        persist_streamed_turns=settings.conversations.persist_streamed_turns,
    )


def create_app(
    config: Optional[dict[str, Any]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        config: Parsed configuration mapping. Loaded from VERTIGO_CONFIG or
            configs/config.yaml when omitted.
        transport: Optional httpx transport for upstream calls (tests use
            ``httpx.MockTransport``).

    Raises:
        ConfigurationError: The configuration is missing or invalid.
    """
    if config is None:
        config = load_config()
    settings = parse_settings(config)
    orchestrator = build_orchestrator(settings, transport=transport)

    app = FastAPI(title="vertigo proxy")
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.expose_conversation_id = settings.conversations.expose_id
    app.state.started_at = int(time.time())
    app.add_middleware(RequestLoggingMiddleware)

    for prefix in ROUTE_PREFIXES:
        app.post(f"{prefix}/v1/chat/completions")(chat_completions)
        app.post(f"{prefix}/v1/completions")(completions)
        app.post(f"{prefix}/v1/embeddings")(embeddings)
        app.get(f"{prefix}/v1/models")(list_models)
        app.get(f"{prefix}/v1/models/{{model_id:path}}")(get_model)
        app.delete(f"{prefix}/v1/conversations/{{conversation_id}}")(delete_conversation)

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        host, port = settings.server.host, settings.server.port
        logger.info("vertigo proxy starting up...")
        logger.info("Configured bind address %s:%s", host, port)
        if host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, port)
        logger.info(
            "Upstream %s/%s with %d credential(s)",
            settings.gemini.base_url,
            settings.gemini.api_version,
            len(orchestrator.pool),
        )
        logger.info(
            "Alias %s -> %s",
            settings.models.alias,
            ", ".join(f"{tier}={model}" for tier, model in settings.models.tiers.items()),
        )
        if orchestrator.store is None:
            logger.info("Conversation context disabled")
        else:
            logger.info(
                "Conversation store: %s (expose_id=%s, persist_streamed_turns=%s)",
                orchestrator.store.backend_name,
                settings.conversations.expose_id,
                settings.conversations.persist_streamed_turns,
            )
        logger.info("vertigo proxy ready to handle requests")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Handle application shutdown."""
        if orchestrator.store is not None:
            logger.info("Closing conversation store")
            orchestrator.store.close()

    return app


__all__ = ["build_orchestrator", "create_app"]
