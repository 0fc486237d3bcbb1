"""Legacy OpenAI completions endpoint, served through the chat path."""

import logging

from fastapi import Request, Response

from ...core.exceptions import ProxyError
from .common import build_response, get_orchestrator, read_json_payload

logger = logging.getLogger("vertigo-proxy")


async def completions(request: Request) -> Response:
    """POST /v1/completions"""
    logger.info("Received legacy completions request")
    payload = await read_json_payload(request)
    try:
        result = await get_orchestrator(request).text_completion(
            payload, disconnect_checker=request.is_disconnected
        )
    except ProxyError as exc:
        logger.error(f"Completion failed ({exc.code}): {exc.message}")
        raise exc.to_http_exception() from exc
    return build_response(request, result)
