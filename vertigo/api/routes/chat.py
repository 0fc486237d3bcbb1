"""OpenAI-compatible chat completions endpoint."""

import logging

from fastapi import Request, Response

from ...core.exceptions import ProxyError
from .common import build_response, get_orchestrator, read_json_payload

logger = logging.getLogger("vertigo-proxy")


async def chat_completions(request: Request) -> Response:
    """Chat completions endpoint - OpenAI compatible.

    POST /v1/chat/completions

    Conversation context is attached when the body carries a
    ``conversation_id`` or the request has an ``X-Conversation-ID`` header.
    """
    logger.info("Received chat completions request")
    payload = await read_json_payload(request)
    orchestrator = get_orchestrator(request)
    try:
        result = await orchestrator.chat_completion(
            payload,
            headers=request.headers,
            disconnect_checker=request.is_disconnected,
        )
    except ProxyError as exc:
        logger.error(f"Chat completion failed ({exc.code}): {exc.message}")
        raise exc.to_http_exception() from exc
    return build_response(request, result)
