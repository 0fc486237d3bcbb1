"""HTTP client for the Gemini native API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from .credentials import mask_credential
from .exceptions import TranslationFailure, UpstreamFailure

logger = logging.getLogger("vertigo-proxy")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_API_VERSION = "v1beta"
DEFAULT_TIMEOUT = 60.0
ERROR_BODY_LOG_LIMIT = 2048


def build_outbound_headers(credential: str, is_stream: bool = False) -> dict[str, str]:
    """Build headers for an upstream request."""
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {credential}",
        # Explicitly request uncompressed responses
        "Accept-Encoding": "identity",
    }
    if is_stream:
        headers["Accept"] = "text/event-stream"
    return headers


def _safe_headers_for_log(headers: Mapping[str, str]) -> dict[str, str]:
    safe: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() == "authorization":
            token = value.split(" ", 1)[-1]
            safe[key] = f"Bearer {mask_credential(token)}"
        else:
            safe[key] = value
    return safe


def format_httpx_error(exc: Exception, url: str, timeout: Optional[float] = None) -> str:
    """Produce a detailed description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)
    parts.append(f"url={url}")
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)) and timeout:
        parts.append(f"timeout={timeout}s")
    return "; ".join(parts)


def _decode_json(content: bytes, url: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.debug("Unparseable upstream payload from %s: %r", url, content)
        raise TranslationFailure(f"Upstream returned invalid JSON: {exc}") from exc


def _failure_from_response(status_code: int, content: bytes, url: str) -> UpstreamFailure:
    logger.warning("Upstream %s returned status %s", url, status_code)
    logger.debug("Upstream error body: %r", content[:ERROR_BODY_LOG_LIMIT])
    return UpstreamFailure(
        f"Upstream returned status {status_code}",
        upstream_status=status_code,
        upstream_body=content,
    )


class UpstreamStream:
    """An open streaming upstream response.

    Iterate ``aiter_lines`` to consume the event stream and always call
    ``aclose`` afterwards; closing twice is harmless.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, url: str) -> None:
        self._client = client
        self._response = response
        self.url = url
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def aiter_lines(self) -> AsyncIterator[str]:
        async for line in self._response.aiter_lines():
            yield line

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing stream for %s", self.url)
        await self._response.aclose()
        await self._client.aclose()


class GeminiClient:
    """Calls ``generateContent``, ``streamGenerateContent`` and embeddings.

    The client holds no credentials; every call receives the credential the
    orchestrator acquired for that request.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version.strip("/")
        self.timeout = timeout
        self._transport = transport

    def build_url(self, model: str, method: str, stream: bool = False) -> str:
        url = f"{self.base_url}/{self.api_version}/models/{model}:{method}"
        if stream:
            url = f"{url}?alt=sse"
        return url

    async def generate_content(
        self, model: str, body: Mapping[str, Any], credential: str
    ) -> dict[str, Any]:
        """Run a non-streaming generation and return the decoded response."""
        url = self.build_url(model, "generateContent")
        payload = await self._post_json(url, body, credential)
        if not isinstance(payload, dict):
            logger.debug("Unexpected generateContent payload: %r", payload)
            raise TranslationFailure("Upstream response is not a JSON object")
        return payload

    async def embed_contents(
        self, model: str, texts: list[str], credential: str
    ) -> list[list[float]]:
        """Embed one or more texts, preserving input order."""
        if len(texts) == 1:
            url = self.build_url(model, "embedContent")
            body: dict[str, Any] = {"content": {"parts": [{"text": texts[0]}]}}
            payload = await self._post_json(url, body, credential)
            vectors = [_embedding_values(payload.get("embedding") if isinstance(payload, dict) else None)]
        else:
            url = self.build_url(model, "batchEmbedContents")
            body = {
                "requests": [
                    {"model": f"models/{model}", "content": {"parts": [{"text": text}]}}
                    for text in texts
                ]
            }
            payload = await self._post_json(url, body, credential)
            embeddings = payload.get("embeddings") if isinstance(payload, dict) else None
            if not isinstance(embeddings, list) or len(embeddings) != len(texts):
                logger.debug("Unexpected batchEmbedContents payload: %r", payload)
                raise TranslationFailure("Upstream returned a mismatched embeddings list")
            vectors = [_embedding_values(item) for item in embeddings]
        return vectors

    async def open_stream(
        self, model: str, body: Mapping[str, Any], credential: str
    ) -> UpstreamStream:
        """Start a streaming generation.

        Raises:
            UpstreamFailure: The request failed or returned a non-2xx status.
                The connection is closed before raising.
        """
        url = self.build_url(model, "streamGenerateContent", stream=True)
        headers = build_outbound_headers(credential, is_stream=True)
        content = json.dumps(body, ensure_ascii=False).encode("utf-8")
        stream_timeout = httpx.Timeout(
            connect=self.timeout, read=None, write=self.timeout, pool=self.timeout
        )
        client = httpx.AsyncClient(timeout=stream_timeout, transport=self._transport)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Streaming request headers: %s", _safe_headers_for_log(headers))
        try:
            request = client.build_request("POST", url, headers=headers, content=content)
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            detail = format_httpx_error(exc, url, self.timeout)
            logger.error("Failed to open upstream stream: %s", detail)
            raise UpstreamFailure(f"Upstream request error: {detail}") from exc
        except BaseException:
            await client.aclose()
            raise

        if response.status_code < 200 or response.status_code >= 300:
            try:
                data = await response.aread()
            except httpx.HTTPError:
                data = b""
            await response.aclose()
            await client.aclose()
            raise _failure_from_response(response.status_code, data, url)

        logger.info("Upstream stream opened for model %s", model)
        return UpstreamStream(client, response, url)

    async def _post_json(
        self, url: str, body: Mapping[str, Any], credential: str
    ) -> Any:
        headers = build_outbound_headers(credential)
        content = json.dumps(body, ensure_ascii=False).encode("utf-8")
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "POST %s headers=%s body=%s",
                url,
                _safe_headers_for_log(headers),
                content.decode("utf-8", errors="replace"),
            )

        async def _post() -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.post(url, headers=headers, content=content)

        try:
            resp = await asyncio.wait_for(_post(), timeout=self.timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            detail = format_httpx_error(exc, url, self.timeout)
            logger.error("Upstream request failed: %s", detail)
            raise UpstreamFailure(f"Upstream request error: {detail}") from exc

        logger.debug("Received response from %s: status %s", url, resp.status_code)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise _failure_from_response(resp.status_code, resp.content, url)
        return _decode_json(resp.content, url)


def _embedding_values(item: Any) -> list[float]:
    values = item.get("values") if isinstance(item, dict) else None
    if not isinstance(values, list):
        logger.debug("Unexpected embedding payload: %r", item)
        raise TranslationFailure("Upstream embedding is missing 'values'")
    return values
