"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import pytest


def gemini_text_response(
    text: str, prompt_tokens: int = 10, total_tokens: int = 15, finish_reason: str = "STOP"
) -> dict[str, Any]:
    """Build a minimal successful generateContent response."""
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": finish_reason,
            }
        ],
        "usageMetadata": {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": max(0, total_tokens - prompt_tokens),
            "totalTokenCount": total_tokens,
        },
    }


def gemini_sse_body(chunks: list[str], finish_reason: Optional[str] = "STOP") -> bytes:
    """Build a streamGenerateContent?alt=sse body, one event per text chunk."""
    events = []
    for index, text in enumerate(chunks):
        candidate: dict[str, Any] = {"content": {"role": "model", "parts": [{"text": text}]}}
        if finish_reason and index == len(chunks) - 1:
            candidate["finishReason"] = finish_reason
        events.append(f"data: {json.dumps({'candidates': [candidate]})}\r\n\r\n")
    return "".join(events).encode("utf-8")


class FakeGemini:
    """Records upstream requests and answers them from queued responses.

    Each queued item is an ``httpx.Response`` or a callable taking the
    request. With nothing queued, a fixed text response is returned.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.queue: list[httpx.Response | Callable[[httpx.Request], httpx.Response]] = []

    def enqueue(self, response: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> None:
        self.queue.append(response)

    def enqueue_json(self, payload: Any, status_code: int = 200) -> None:
        self.queue.append(httpx.Response(status_code, json=payload))

    def enqueue_stream(self, chunks: list[str], finish_reason: Optional[str] = "STOP") -> None:
        self.queue.append(
            httpx.Response(
                200,
                content=gemini_sse_body(chunks, finish_reason),
                headers={"content-type": "text/event-stream"},
            )
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queue:
            item = self.queue.pop(0)
            return item(request) if callable(item) else item
        return httpx.Response(200, json=gemini_text_response("default reply"))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Any:
        return json.loads(self.last_request.content)


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def base_config() -> dict[str, Any]:
    """A minimal valid configuration mapping."""
    return {
        "server": {"host": "127.0.0.1", "port": 9999},
        "gemini": {
            "api_keys": ["key-alpha-0001", "key-bravo-0002"],
            "base_url": "https://gemini.test",
            "request_timeout": 5,
            "quarantine_seconds": 60,
        },
        "conversations": {"enabled": True, "backend": "memory"},
    }
