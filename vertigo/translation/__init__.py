"""Translation between the OpenAI wire format and the Gemini native API."""

from .stream_adapter import GeminiToChatStreamAdapter, StreamingChunk, decode_stream_chunk
from .translator import (
    ChatRequest,
    UpstreamRequest,
    build_generate_body,
    build_outbound_messages,
    chat_to_text_completion,
    derive_usage,
    extract_generation_config,
    map_finish_reason,
    parse_chat_request,
    parse_completion_request,
    parse_embedding_input,
    translate_embeddings_response,
    translate_generate_response,
    translate_outbound,
)

__all__ = [
    "ChatRequest",
    "GeminiToChatStreamAdapter",
    "StreamingChunk",
    "UpstreamRequest",
    "build_generate_body",
    "build_outbound_messages",
    "chat_to_text_completion",
    "decode_stream_chunk",
    "derive_usage",
    "extract_generation_config",
    "map_finish_reason",
    "parse_chat_request",
    "parse_completion_request",
    "parse_embedding_input",
    "translate_embeddings_response",
    "translate_generate_response",
    "translate_outbound",
]
