"""Per-request composition of the proxy pipeline.

Every request walks the same stages::

    RESOLVE_CONVERSATION -> SELECT_MODEL -> ACQUIRE_CREDENTIAL ->
    TRANSLATE_OUTBOUND -> CALL_UPSTREAM -> TRANSLATE_INBOUND ->
    PERSIST -> RESPOND

The first failing stage aborts the rest. There is no retry with another
credential inside one client request; a failed upstream call quarantines the
credential it used and the error is reported to the client.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Mapping, Optional, Sequence

from .conversations import ROLE_ASSISTANT, ConversationStore, Message, new_conversation_id
from .core.credentials import CredentialPool, mask_credential
from .core.exceptions import StoreFailure, UpstreamFailure
from .core.model_selector import EFFORT_FIELD, ModelSelector
from .core.upstream import GeminiClient, UpstreamStream
from .translation import (
    ChatRequest,
    GeminiToChatStreamAdapter,
    UpstreamRequest,
    chat_to_text_completion,
    parse_chat_request,
    parse_completion_request,
    parse_embedding_input,
    translate_embeddings_response,
    translate_generate_response,
    translate_outbound,
)

logger = logging.getLogger("vertigo-proxy")

DEFAULT_QUARANTINE_SECONDS = 300.0

DisconnectChecker = Callable[[], Awaitable[bool]]


class Stage(str, Enum):
    RESOLVE_CONVERSATION = "resolve_conversation"
    SELECT_MODEL = "select_model"
    ACQUIRE_CREDENTIAL = "acquire_credential"
    TRANSLATE_OUTBOUND = "translate_outbound"
    CALL_UPSTREAM = "call_upstream"
    TRANSLATE_INBOUND = "translate_inbound"
    PERSIST = "persist"
    RESPOND = "respond"


@dataclass
class ChatResult:
    """A complete, non-streaming response body."""

    body: dict[str, Any]
    conversation_id: Optional[str] = None


class FrameStream:
    """Async iterator of encoded SSE frames that owns the upstream connection.

    ``aclose`` releases the upstream even when iteration never started.
    """

    def __init__(self, frames: AsyncGenerator[bytes, None], upstream: UpstreamStream) -> None:
        self._frames = frames
        self._upstream = upstream

    def __aiter__(self) -> "FrameStream":
        return self

    async def __anext__(self) -> bytes:
        return await self._frames.__anext__()

    async def aclose(self) -> None:
        try:
            await self._frames.aclose()
        finally:
            await self._upstream.aclose()


@dataclass
class StreamResult:
    """An open response stream of encoded SSE frames."""

    stream: FrameStream
    model: str
    conversation_id: Optional[str] = None


@dataclass
class _RequestContext:
    request_kind: str
    stage: Stage = Stage.RESOLVE_CONVERSATION
    model: Optional[str] = None
    credential: Optional[str] = None
    conversation_id: Optional[str] = None
    history: Sequence[Message] = field(default_factory=tuple)
    history_loaded: bool = False

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        logger.debug("[%s] stage=%s", self.request_kind, stage.value)


class ProxyOrchestrator:
    """Owns the credential pool, model selector, upstream client and store.

    Args:
        pool: Credential pool used for every upstream call.
        selector: Alias model resolution.
        client: Gemini HTTP client.
        store: Conversation store; ``None`` disables conversation context.
        quarantine_seconds: Cooldown applied to a credential after an
            upstream failure.
        persist_streamed_turns: Accumulate streamed text and persist it once
            the stream ends cleanly.
    """

    def __init__(
        self,
        pool: CredentialPool,
        selector: ModelSelector,
        client: GeminiClient,
        store: Optional[ConversationStore] = None,
        quarantine_seconds: float = DEFAULT_QUARANTINE_SECONDS,
        persist_streamed_turns: bool = False,
    ) -> None:
        self.pool = pool
        self.selector = selector
        self.client = client
        self.store = store
        self.quarantine_seconds = quarantine_seconds
        self.persist_streamed_turns = persist_streamed_turns

    async def chat_completion(
        self,
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> ChatResult | StreamResult:
        """Serve one ``/v1/chat/completions`` request.

        Raises:
            MalformedRequestError: The body is not a valid chat request.
            NoCredentialAvailable: Every credential is quarantined.
            UpstreamFailure: The upstream call failed.
            TranslationFailure: The upstream response had an unexpected shape.
        """
        request = parse_chat_request(payload, headers)
        ctx = _RequestContext(request_kind="chat")

        await self._resolve_conversation(ctx, request.conversation_id)

        ctx.advance(Stage.SELECT_MODEL)
        ctx.model, _ = self.selector.select_for_payload(payload, request.model)

        return await self._generate(
            ctx, request, ctx.model, disconnect_checker=disconnect_checker, text_completion=False
        )

    async def text_completion(
        self,
        payload: Any,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> ChatResult | StreamResult:
        """Serve a legacy ``/v1/completions`` request through the chat path.

        Legacy completions never use conversation context.
        """
        request = parse_completion_request(payload)
        ctx = _RequestContext(request_kind="completion")

        ctx.advance(Stage.SELECT_MODEL)
        ctx.model = self.selector.select_completion_model(request.model, payload.get(EFFORT_FIELD))

        return await self._generate(
            ctx, request, ctx.model, disconnect_checker=disconnect_checker, text_completion=True
        )

    async def embeddings(self, payload: Any) -> ChatResult:
        """Serve ``/v1/embeddings``; the response reports the requested model name."""
        requested_model, texts = parse_embedding_input(payload)
        ctx = _RequestContext(request_kind="embeddings")

        ctx.advance(Stage.SELECT_MODEL)
        ctx.model = self.selector.select_embedding_model(requested_model)

        ctx.advance(Stage.ACQUIRE_CREDENTIAL)
        ctx.credential = self.pool.acquire()

        ctx.advance(Stage.CALL_UPSTREAM)
        logger.info("Embedding %d input(s) with model %s", len(texts), ctx.model)
        try:
            vectors = await self.client.embed_contents(ctx.model, texts, ctx.credential)
        except UpstreamFailure:
            self._quarantine(ctx)
            raise

        ctx.advance(Stage.TRANSLATE_INBOUND)
        body = translate_embeddings_response(vectors, requested_model)
        ctx.advance(Stage.RESPOND)
        return ChatResult(body=body)

    async def delete_conversation(self, conversation_id: str) -> bool:
        if self.store is None:
            return False
        return await asyncio.to_thread(self.store.delete, conversation_id)

    async def _resolve_conversation(
        self, ctx: _RequestContext, conversation_id: Optional[str]
    ) -> None:
        ctx.advance(Stage.RESOLVE_CONVERSATION)
        if self.store is None:
            ctx.conversation_id = conversation_id
            return
        try:
            conversation = await asyncio.to_thread(self.store.get, conversation_id)
        except StoreFailure as exc:
            ctx.conversation_id = conversation_id or new_conversation_id()
            logger.error(
                "Conversation %s could not be loaded, continuing without history: %s",
                ctx.conversation_id,
                exc,
            )
            return
        ctx.conversation_id = conversation.id
        ctx.history = conversation.messages
        ctx.history_loaded = True
        logger.debug(
            "Conversation %s has %d stored message(s)", conversation.id, len(conversation.messages)
        )

    async def _generate(
        self,
        ctx: _RequestContext,
        request: ChatRequest,
        model: str,
        disconnect_checker: Optional[DisconnectChecker],
        text_completion: bool,
    ) -> ChatResult | StreamResult:
        ctx.advance(Stage.ACQUIRE_CREDENTIAL)
        ctx.credential = self.pool.acquire()

        ctx.advance(Stage.TRANSLATE_OUTBOUND)
        upstream_request = translate_outbound(
            request, model, history=ctx.history, conversation_id=ctx.conversation_id
        )
        logger.info(
            "Forwarding %s request: model=%s stream=%s credential=%s",
            ctx.request_kind,
            model,
            request.stream,
            mask_credential(ctx.credential),
        )

        ctx.advance(Stage.CALL_UPSTREAM)
        if request.stream:
            try:
                upstream = await self.client.open_stream(
                    model, upstream_request.body, ctx.credential
                )
            except UpstreamFailure:
                self._quarantine(ctx)
                raise
            adapter = GeminiToChatStreamAdapter(
                model,
                text_completion=text_completion,
                accumulate=self.persist_streamed_turns and ctx.history_loaded,
            )
            ctx.advance(Stage.TRANSLATE_INBOUND)
            frames = self._stream_frames(upstream, adapter, upstream_request, disconnect_checker)
            return StreamResult(
                stream=FrameStream(frames, upstream),
                model=model,
                conversation_id=upstream_request.conversation_id,
            )

        try:
            response = await self.client.generate_content(
                model, upstream_request.body, ctx.credential
            )
        except UpstreamFailure:
            self._quarantine(ctx)
            raise

        ctx.advance(Stage.TRANSLATE_INBOUND)
        body, text = translate_generate_response(response, model)

        ctx.advance(Stage.PERSIST)
        if ctx.history_loaded:
            await self._persist_turns(upstream_request, text)

        ctx.advance(Stage.RESPOND)
        if text_completion:
            body = chat_to_text_completion(body)
        return ChatResult(body=body, conversation_id=upstream_request.conversation_id)

    async def _stream_frames(
        self,
        upstream: UpstreamStream,
        adapter: GeminiToChatStreamAdapter,
        upstream_request: UpstreamRequest,
        disconnect_checker: Optional[DisconnectChecker],
    ) -> AsyncIterator[bytes]:
        async def lines() -> AsyncIterator[str]:
            async for line in upstream.aiter_lines():
                if disconnect_checker and await disconnect_checker():
                    raise asyncio.CancelledError("client disconnected")
                yield line

        try:
            async for frame in adapter.adapt_stream(lines()):
                yield frame
        except asyncio.CancelledError:
            logger.info("Stream for model %s cancelled by client", adapter.model)
            raise
        finally:
            logger.debug(
                "Stream for model %s finished after %d chunk(s)", adapter.model, adapter.chunk_count
            )
            await upstream.aclose()

        if adapter.accumulate and adapter.completed:
            await self._persist_turns(upstream_request, adapter.accumulated_text)

    async def _persist_turns(self, upstream_request: UpstreamRequest, assistant_text: str) -> None:
        """Append the new client turns and the assistant reply.

        Store failures are logged; the client already has its answer.
        """
        if self.store is None or not upstream_request.conversation_id:
            return
        conversation_id = upstream_request.conversation_id
        turns = [*upstream_request.new_turns, Message(role=ROLE_ASSISTANT, content=assistant_text)]
        try:
            for turn in turns:
                await asyncio.to_thread(self.store.append, conversation_id, turn.role, turn.content)
        except StoreFailure as exc:
            logger.error("Failed to persist turns for conversation %s: %s", conversation_id, exc)
            return
        logger.debug("Persisted %d message(s) to conversation %s", len(turns), conversation_id)

    def _quarantine(self, ctx: _RequestContext) -> None:
        if ctx.credential is None:
            return
        logger.warning(
            "Upstream call failed at stage %s for model %s; quarantining credential",
            ctx.stage.value,
            ctx.model,
        )
        self.pool.quarantine(ctx.credential, self.quarantine_seconds)
