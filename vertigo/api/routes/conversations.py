"""Conversation cleanup endpoint."""

import logging

from fastapi import Request

from ...core.exceptions import ConversationNotFoundError, ProxyError
from .common import get_orchestrator

logger = logging.getLogger("vertigo-proxy")


async def delete_conversation(request: Request, conversation_id: str) -> dict:
    """DELETE /v1/conversations/{conversation_id}"""
    try:
        deleted = await get_orchestrator(request).delete_conversation(conversation_id)
    except ProxyError as exc:
        logger.error(f"Failed to delete conversation {conversation_id}: {exc.message}")
        raise exc.to_http_exception() from exc
    if not deleted:
        raise ConversationNotFoundError(
            f"Conversation '{conversation_id}' does not exist"
        ).to_http_exception()
    logger.info(f"Deleted conversation {conversation_id}")
    return {"id": conversation_id, "object": "conversation.deleted", "deleted": True}
