"""Helpers shared by the API route handlers."""

import json
import logging
from typing import Any

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from ...orchestrator import ChatResult, ProxyOrchestrator, StreamResult

logger = logging.getLogger("vertigo-proxy")

CONVERSATION_ID_HEADER = "X-Conversation-ID"


def get_orchestrator(request: Request) -> ProxyOrchestrator:
    return request.app.state.orchestrator


async def read_json_payload(request: Request) -> Any:
    """Parse the request body as JSON or raise a 400 in the OpenAI error shape."""
    body = await request.body()
    try:
        return json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.error(f"Invalid JSON payload: {exc}")
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "message": "Invalid JSON payload",
                    "type": "invalid_request_error",
                    "code": "invalid_json",
                }
            },
        ) from exc


def build_response(request: Request, result: ChatResult | StreamResult) -> Response:
    """Turn an orchestrator result into a JSON or SSE response.

    With ``conversations.expose_id`` enabled the effective conversation id is
    returned in a header and, for JSON bodies, as ``conversation_id``.
    """
    expose_id = bool(getattr(request.app.state, "expose_conversation_id", False))
    headers: dict[str, str] = {}
    if expose_id and result.conversation_id:
        headers[CONVERSATION_ID_HEADER] = result.conversation_id

    if isinstance(result, StreamResult):
        headers["Cache-Control"] = "no-cache"
        # Also closes the upstream for a body that was never iterated
        return StreamingResponse(
            result.stream,
            media_type="text/event-stream",
            headers=headers,
            background=BackgroundTask(result.stream.aclose),
        )

    body = result.body
    if expose_id and result.conversation_id:
        body = {**body, "conversation_id": result.conversation_id}
    return JSONResponse(content=body, headers=headers)
