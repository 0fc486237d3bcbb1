"""OpenAI-compatible embeddings endpoint."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ...core.exceptions import ProxyError
from .common import get_orchestrator, read_json_payload

logger = logging.getLogger("vertigo-proxy")


async def embeddings(request: Request) -> JSONResponse:
    """Embeddings endpoint - OpenAI compatible.

    POST /v1/embeddings

    Embeddings are never streamed. The response echoes the requested model
    name even when it was mapped to a different upstream model.
    """
    logger.info("Received embeddings request")
    payload = await read_json_payload(request)
    try:
        result = await get_orchestrator(request).embeddings(payload)
    except ProxyError as exc:
        logger.error(f"Embeddings request failed ({exc.code}): {exc.message}")
        raise exc.to_http_exception() from exc
    return JSONResponse(content=result.body)
