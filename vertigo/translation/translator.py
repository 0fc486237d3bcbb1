"""OpenAI <-> Gemini translation.

This module translates OpenAI Chat Completions (and legacy Completions and
Embeddings) requests into Gemini native ``generateContent`` bodies, and
Gemini responses back into the OpenAI wire format. Every function here is a
pure transformation; no upstream calls are made.

Key mappings:
- OpenAI ``system``/``developer`` messages -> Gemini ``systemInstruction``
- OpenAI ``assistant`` role -> Gemini ``model`` role
- OpenAI text content (string or text parts) -> Gemini ``parts[].text``
- OpenAI generation parameters -> Gemini ``generationConfig``
- Gemini ``usageMetadata`` -> OpenAI ``usage``

Reference:
- Gemini API: https://ai.google.dev/api/generate-content
- OpenAI Chat Completions: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ..conversations.store import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message
from ..core.exceptions import MalformedRequestError, TranslationFailure

logger = logging.getLogger("vertigo-proxy")

CONVERSATION_ID_FIELD = "conversation_id"

# OpenAI parameter name -> Gemini generationConfig name
GENERATION_PARAMETERS = {
    "temperature": "temperature",
    "top_p": "topP",
    "max_tokens": "maxOutputTokens",
    "max_completion_tokens": "maxOutputTokens",
    "n": "candidateCount",
    "presence_penalty": "presencePenalty",
    "frequency_penalty": "frequencyPenalty",
    "seed": "seed",
}

ROLE_ALIASES = {"developer": ROLE_SYSTEM}

GEMINI_ROLES = {ROLE_USER: "user", ROLE_ASSISTANT: "model"}

# Gemini finishReason -> OpenAI finish_reason
FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "IMAGE_SAFETY": "content_filter",
    "MALFORMED_FUNCTION_CALL": "stop",
    "LANGUAGE": "stop",
    "OTHER": "stop",
}
OPENAI_FINISH_REASONS = {"stop", "length", "content_filter", "tool_calls", "function_call"}


@dataclass
class ChatRequest:
    """A validated inbound chat request."""

    model: str
    messages: list[Message]
    generation_config: dict[str, Any] = field(default_factory=dict)
    stream: bool = False
    conversation_id: Optional[str] = None


@dataclass
class UpstreamRequest:
    """A translated request, ready to send.

    ``conversation_id`` travels with the request so the response step can
    persist under the same id; ``new_turns`` are the client messages that
    will be appended to the history once the upstream call succeeds.
    """

    model: str
    body: dict[str, Any]
    conversation_id: Optional[str] = None
    new_turns: list[Message] = field(default_factory=list)


def new_completion_id(prefix: str = "chatcmpl") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def _require_object(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedRequestError("Request body must be a JSON object", code="invalid_json_shape")
    return payload


def _require_model(payload: Mapping[str, Any]) -> str:
    model = payload.get("model")
    if not isinstance(model, str) or not model.strip():
        raise MalformedRequestError("You must provide a model parameter", code="missing_parameter")
    return model.strip()


def _stream_flag(payload: Mapping[str, Any]) -> bool:
    stream = payload.get("stream")
    if stream is None:
        return False
    if not isinstance(stream, bool):
        raise MalformedRequestError("'stream' must be a boolean", code="invalid_parameter")
    return stream


def _content_to_text(content: Any) -> str:
    """Flatten OpenAI message content (string or parts list) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, Mapping) and part.get("type", "text") == "text":
                text = part.get("text")
                if isinstance(text, str):
                    texts.append(text)
            else:
                logger.debug("Dropping non-text content part: %s", type(part).__name__)
        return "".join(texts)
    raise MalformedRequestError("Message content must be a string or a list of parts")


def parse_messages(raw_messages: Any) -> list[Message]:
    if not isinstance(raw_messages, list) or not raw_messages:
        raise MalformedRequestError("You must provide a messages array", code="missing_parameter")
    messages: list[Message] = []
    for index, raw in enumerate(raw_messages):
        if not isinstance(raw, Mapping):
            raise MalformedRequestError(f"messages[{index}] must be an object")
        role = str(raw.get("role") or "").strip().lower()
        role = ROLE_ALIASES.get(role, role)
        if role not in (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM):
            raise MalformedRequestError(
                f"messages[{index}] has unsupported role {raw.get('role')!r}",
                code="invalid_parameter",
            )
        messages.append(Message(role=role, content=_content_to_text(raw.get("content"))))
    return messages


def extract_generation_config(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Map OpenAI sampling parameters to a Gemini generationConfig.

    Parameters absent (or null) in the request are omitted, never zeroed.
    ``max_completion_tokens`` wins over ``max_tokens`` when both are set.
    """
    config: dict[str, Any] = {}
    for name, target in GENERATION_PARAMETERS.items():
        value = payload.get(name)
        if value is None:
            continue
        if target in config and name != "max_completion_tokens":
            continue
        config[target] = value
    stop = payload.get("stop")
    if isinstance(stop, str):
        config["stopSequences"] = [stop]
    elif isinstance(stop, list):
        sequences = [item for item in stop if isinstance(item, str)]
        if sequences:
            config["stopSequences"] = sequences
    return config


def resolve_conversation_id(
    payload: Mapping[str, Any], headers: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """Read the client conversation id from the body, then the header."""
    value = payload.get(CONVERSATION_ID_FIELD)
    if isinstance(value, str) and value.strip():
        return value.strip()
    if headers is not None:
        header_value = headers.get("x-conversation-id") or headers.get("X-Conversation-ID")
        if header_value and header_value.strip():
            return header_value.strip()
    return None


def parse_chat_request(
    payload: Any, headers: Optional[Mapping[str, str]] = None
) -> ChatRequest:
    """Validate an inbound chat completions body.

    Raises:
        MalformedRequestError: The body is not a usable chat request.
    """
    payload = _require_object(payload)
    model = _require_model(payload)
    return ChatRequest(
        model=model,
        messages=parse_messages(payload.get("messages")),
        generation_config=extract_generation_config(payload),
        stream=_stream_flag(payload),
        conversation_id=resolve_conversation_id(payload, headers),
    )


def parse_completion_request(payload: Any) -> ChatRequest:
    """Map a legacy ``/v1/completions`` body onto a single-turn chat request."""
    payload = _require_object(payload)
    model = _require_model(payload)
    prompt = payload.get("prompt")
    if isinstance(prompt, str):
        text = prompt
    elif isinstance(prompt, list) and all(isinstance(item, str) for item in prompt):
        text = "\n".join(prompt)
    else:
        raise MalformedRequestError(
            "You must provide a prompt string or array of strings", code="missing_parameter"
        )
    return ChatRequest(
        model=model,
        messages=[Message(role=ROLE_USER, content=text)],
        generation_config=extract_generation_config(payload),
        stream=_stream_flag(payload),
    )


def parse_embedding_input(payload: Any) -> tuple[str, list[str]]:
    """Return the requested model and the list of texts to embed."""
    payload = _require_object(payload)
    model = _require_model(payload)
    raw_input = payload.get("input")
    if raw_input is None:
        raise MalformedRequestError("You must provide an input parameter", code="missing_parameter")
    if isinstance(raw_input, str):
        return model, [raw_input]
    if isinstance(raw_input, list) and raw_input and all(isinstance(item, str) for item in raw_input):
        return model, list(raw_input)
    raise MalformedRequestError(
        "Input must be a string or a non-empty array of strings", code="invalid_parameter"
    )


def build_outbound_messages(
    client_messages: Sequence[Message], history: Optional[Sequence[Message]]
) -> tuple[list[Message], list[Message]]:
    """Combine stored history with the client's newly arrived turn.

    Returns:
        ``(outbound, new_turns)``. With no stored history the client's
        messages are sent as-is and all of them seed the history. Otherwise
        the stored history supersedes the client's copy and only a trailing
        ``user`` message is taken as the new turn.
    """
    if not history:
        return list(client_messages), list(client_messages)
    latest = client_messages[-1] if client_messages else None
    if latest is not None and latest.role == ROLE_USER:
        return [*history, latest], [latest]
    return list(history), []


def build_generate_body(
    messages: Sequence[Message], generation_config: Optional[Mapping[str, Any]] = None
) -> dict[str, Any]:
    """Build a Gemini ``generateContent`` body, preserving message order."""
    contents: list[dict[str, Any]] = []
    system_parts: list[dict[str, str]] = []
    for message in messages:
        if message.role == ROLE_SYSTEM:
            system_parts.append({"text": message.content})
            continue
        contents.append(
            {"role": GEMINI_ROLES[message.role], "parts": [{"text": message.content}]}
        )
    body: dict[str, Any] = {"contents": contents}
    if system_parts:
        body["systemInstruction"] = {"parts": system_parts}
    if generation_config:
        body["generationConfig"] = dict(generation_config)
    return body


def translate_outbound(
    request: ChatRequest,
    model: str,
    history: Optional[Sequence[Message]] = None,
    conversation_id: Optional[str] = None,
) -> UpstreamRequest:
    """Translate a chat request for the resolved upstream model."""
    outbound, new_turns = build_outbound_messages(request.messages, history)
    return UpstreamRequest(
        model=model,
        body=build_generate_body(outbound, request.generation_config),
        conversation_id=conversation_id,
        new_turns=new_turns,
    )


def map_finish_reason(reason: Any) -> Optional[str]:
    if not isinstance(reason, str) or not reason:
        return None
    if reason in OPENAI_FINISH_REASONS:
        return reason
    mapped = FINISH_REASONS.get(reason.upper())
    if mapped:
        return mapped
    if reason.upper() == "FINISH_REASON_UNSPECIFIED":
        return None
    return reason.lower()


def candidate_text(candidate: Any) -> str:
    """Concatenate the text parts of one Gemini candidate ("" if absent)."""
    if not isinstance(candidate, Mapping):
        return ""
    content = candidate.get("content")
    if not isinstance(content, Mapping):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    texts: list[str] = []
    for part in parts:
        if not isinstance(part, Mapping) or part.get("thought"):
            continue
        text = part.get("text")
        if isinstance(text, str):
            texts.append(text)
    return "".join(texts)


def derive_usage(usage_metadata: Any) -> dict[str, int]:
    """Map Gemini usage counts; completion tokens are clamped at zero."""
    prompt_tokens = 0
    total_tokens = 0
    if isinstance(usage_metadata, Mapping):
        prompt_tokens = _as_int(usage_metadata.get("promptTokenCount"))
        total_tokens = _as_int(usage_metadata.get("totalTokenCount"))
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": max(0, total_tokens - prompt_tokens),
        "total_tokens": total_tokens,
    }


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def translate_generate_response(
    response: Any,
    model: str,
    response_id: Optional[str] = None,
    created: Optional[int] = None,
) -> tuple[dict[str, Any], str]:
    """Convert a successful Gemini ``generateContent`` response.

    Returns:
        The OpenAI chat completion body and the extracted assistant text.

    Raises:
        TranslationFailure: The response does not look like a Gemini
            generation result.
    """
    if not isinstance(response, Mapping):
        logger.debug("Unexpected upstream payload: %r", response)
        raise TranslationFailure("Upstream response is not a JSON object")
    candidates = response.get("candidates", [])
    if candidates is None:
        candidates = []
    if not isinstance(candidates, list):
        logger.debug("Unexpected upstream candidates: %r", response)
        raise TranslationFailure("Upstream 'candidates' is not a list")

    text = candidate_text(candidates[0]) if candidates else ""
    body = {
        "id": response_id or new_completion_id(),
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": ROLE_ASSISTANT, "content": text},
                "finish_reason": "stop",
            }
        ],
        "usage": derive_usage(response.get("usageMetadata")),
    }
    return body, text


def chat_to_text_completion(chat_body: Mapping[str, Any]) -> dict[str, Any]:
    """Reshape a chat completion body into a legacy text completion."""
    choices = []
    for choice in chat_body.get("choices", []):
        message = choice.get("message") or {}
        choices.append(
            {
                "text": message.get("content", ""),
                "index": choice.get("index", 0),
                "logprobs": None,
                "finish_reason": choice.get("finish_reason"),
            }
        )
    chat_id = str(chat_body.get("id", ""))
    completion_id = (
        "cmpl-" + chat_id[len("chatcmpl-"):] if chat_id.startswith("chatcmpl-") else chat_id
    )
    return {
        "id": completion_id or new_completion_id("cmpl"),
        "object": "text_completion",
        "created": chat_body.get("created", int(time.time())),
        "model": chat_body.get("model"),
        "choices": choices,
        "usage": chat_body.get("usage"),
    }


def translate_embeddings_response(vectors: Sequence[Sequence[float]], model: str) -> dict[str, Any]:
    """Build an OpenAI embeddings list; the upstream reports no token usage."""
    return {
        "object": "list",
        "data": [
            {"object": "embedding", "embedding": list(vector), "index": index}
            for index, vector in enumerate(vectors)
        ],
        "model": model,
        "usage": {"prompt_tokens": 0, "total_tokens": 0},
    }
