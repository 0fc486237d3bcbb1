"""Models listing endpoints - OpenAI compatible."""

import logging

from fastapi import Request

from ...core.exceptions import ModelNotFoundError
from .common import get_orchestrator

logger = logging.getLogger("vertigo-proxy")


def _model_entries(request: Request) -> list[dict]:
    created = int(getattr(request.app.state, "started_at", 0))
    return [
        {"id": model_id, "object": "model", "created": created, "owned_by": owner}
        for model_id, owner in get_orchestrator(request).selector.advertised_models()
    ]


async def list_models(request: Request) -> dict:
    """List available models in OpenAI API format.

    GET /v1/models
    """
    logger.info("Received models list request")
    return {"object": "list", "data": _model_entries(request)}


async def get_model(request: Request, model_id: str) -> dict:
    """GET /v1/models/{model_id}"""
    for entry in _model_entries(request):
        if entry["id"] == model_id:
            return entry
    raise ModelNotFoundError(f"The model '{model_id}' does not exist").to_http_exception()
