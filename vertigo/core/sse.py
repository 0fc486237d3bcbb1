"""SSE (Server-Sent Events) framing helpers."""

import json
from typing import Any, Optional

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DONE_EVENT = b"data: [DONE]\n\n"


def encode_sse_event(payload: Any) -> bytes:
    """Encode one JSON payload as a ``data:`` event frame."""
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n".encode("utf-8")


def parse_sse_data_line(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def detect_stream_error(payload: Any) -> Optional[str]:
    """Return a message if a decoded stream payload is a Gemini error object.

    Gemini reports mid-stream failures as
    ``{"error": {"code": 429, "message": "...", "status": "..."}}``.
    """
    if not isinstance(payload, dict):
        return None
    error_obj = payload.get("error")
    if not isinstance(error_obj, dict):
        return None
    message = error_obj.get("message") or str(error_obj)
    status = error_obj.get("status") or error_obj.get("code") or "unknown"
    return f"SSE stream error: {message} (status={status})"
