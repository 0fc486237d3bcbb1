"""Stream adapter for converting Gemini streaming SSE to OpenAI Chat Completions SSE.

Gemini Events (``streamGenerateContent?alt=sse``):
    data: {"candidates":[{"content":{"role":"model","parts":[{"text":"Hel"}]}}]}
    data: {"candidates":[{"content":{"parts":[{"text":"lo"}]},"finishReason":"STOP"}],
           "usageMetadata":{...}}

OpenAI Chat Completion Events:
    data: {"id":"chatcmpl-...","object":"chat.completion.chunk","choices":[
           {"index":0,"delta":{"role":"assistant","content":"Hel"},"finish_reason":null}]}
    data: {"id":"chatcmpl-...","object":"chat.completion.chunk","choices":[
           {"index":0,"delta":{"content":"lo"},"finish_reason":"stop"}]}
    data: [DONE]

Each upstream line is translated and yielded before the next one is read, so
the client sees chunks in upstream arrival order with no extra buffering.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from ..core.sse import DONE_EVENT, DONE_SENTINEL, detect_stream_error, encode_sse_event, parse_sse_data_line
from .translator import ROLE_ASSISTANT, candidate_text, map_finish_reason, new_completion_id

logger = logging.getLogger("vertigo-proxy")


@dataclass
class StreamingChunk:
    """One decoded upstream chunk."""

    content_delta: str = ""
    finish_reason: Optional[str] = None


def decode_stream_chunk(payload: Any) -> StreamingChunk:
    """Extract the text delta and finish reason from one Gemini stream payload.

    Missing paths yield an empty delta rather than an error.
    """
    if not isinstance(payload, dict):
        return StreamingChunk()
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return StreamingChunk()
    candidate = candidates[0]
    finish_reason = None
    if isinstance(candidate, dict):
        finish_reason = map_finish_reason(candidate.get("finishReason"))
    return StreamingChunk(content_delta=candidate_text(candidate), finish_reason=finish_reason)


class GeminiToChatStreamAdapter:
    """Transcodes a Gemini SSE stream into OpenAI streaming chunks.

    Args:
        model: Model name reported in every chunk.
        stream_id: Identifier shared by every chunk of this stream.
        text_completion: Emit legacy ``text_completion`` chunks instead of
            ``chat.completion.chunk``.
        accumulate: Keep the concatenated delta text for persistence.
    """

    def __init__(
        self,
        model: str,
        stream_id: Optional[str] = None,
        text_completion: bool = False,
        accumulate: bool = False,
    ):
        self.model = model
        self.text_completion = text_completion
        self.stream_id = stream_id or new_completion_id("cmpl" if text_completion else "chatcmpl")
        self.created = int(time.time())
        self.accumulate = accumulate

        self._text_parts: list[str] = []
        self.chunk_count = 0
        self.finish_reason: Optional[str] = None

        # State flags
        self.saw_done = False
        self.completed = False
        self.error: Optional[str] = None

    @property
    def accumulated_text(self) -> str:
        return "".join(self._text_parts)

    async def adapt_stream(self, lines: AsyncIterator[str]) -> AsyncIterator[bytes]:
        """Yield client SSE frames for each upstream line, then one ``[DONE]``.

        The terminal sentinel is always emitted, also when the upstream ends
        with an error payload or an I/O error. ``completed`` is set only when
        the upstream stream ended cleanly.
        """
        try:
            async for line in lines:
                data = parse_sse_data_line(line.strip())
                if data is None or not data:
                    continue
                if data == DONE_SENTINEL:
                    self.saw_done = True
                    break

                try:
                    payload = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping unparseable stream chunk: %s", data[:200])
                    continue

                error_message = detect_stream_error(payload)
                if error_message:
                    self.error = error_message
                    logger.error("Upstream stream reported an error: %s", error_message)
                    break

                yield self.encode_chunk(decode_stream_chunk(payload))
            else:
                self.completed = True
            if self.saw_done:
                self.completed = True
        except Exception as exc:
            self.error = f"{exc.__class__.__name__}: {exc}"
            logger.error("Upstream stream failed after %d chunks: %s", self.chunk_count, self.error)

        yield DONE_EVENT

    def encode_chunk(self, chunk: StreamingChunk) -> bytes:
        if self.accumulate and chunk.content_delta:
            self._text_parts.append(chunk.content_delta)
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason

        if self.text_completion:
            choice: dict[str, Any] = {
                "text": chunk.content_delta,
                "index": 0,
                "logprobs": None,
                "finish_reason": chunk.finish_reason,
            }
            object_type = "text_completion"
        else:
            delta: dict[str, Any] = {"content": chunk.content_delta}
            if self.chunk_count == 0:
                delta = {"role": ROLE_ASSISTANT, **delta}
            choice = {"index": 0, "delta": delta, "finish_reason": chunk.finish_reason}
            object_type = "chat.completion.chunk"

        self.chunk_count += 1
        return encode_sse_event(
            {
                "id": self.stream_id,
                "object": object_type,
                "created": self.created,
                "model": self.model,
                "choices": [choice],
            }
        )
