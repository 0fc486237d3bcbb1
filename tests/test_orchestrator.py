"""Tests for the proxy orchestrator pipeline."""

import asyncio
import json

import httpx
import pytest

from vertigo.conversations import ROLE_ASSISTANT, ROLE_USER, MemoryConversationStore, Message
from vertigo.core.credentials import CredentialPool
from vertigo.core.exceptions import (
    MalformedRequestError,
    NoCredentialAvailable,
    StoreFailure,
    TranslationFailure,
    UpstreamFailure,
)
from vertigo.core.model_selector import ModelSelector
from vertigo.core.sse import DONE_EVENT
from vertigo.core.upstream import GeminiClient, UpstreamStream
from vertigo.orchestrator import ChatResult, ProxyOrchestrator, StreamResult

from conftest import gemini_text_response

KEYS = ["key-alpha-0001", "key-bravo-0002"]


class BrokenStore(MemoryConversationStore):
    def get(self, conversation_id):
        raise StoreFailure("database is locked")


class ReadOnlyStore(MemoryConversationStore):
    def append(self, conversation_id, role, content):
        raise StoreFailure("disk full")


def _orchestrator(fake_gemini, store=None, **kwargs) -> ProxyOrchestrator:
    return ProxyOrchestrator(
        pool=CredentialPool(KEYS),
        selector=ModelSelector(),
        client=GeminiClient(base_url="https://gemini.test", transport=fake_gemini.transport),
        store=store,
        quarantine_seconds=60,
        **kwargs,
    )


def _chat(content: str = "Hi", **extra) -> dict:
    return {"model": "vertigo-1.0-blast", "messages": [{"role": "user", "content": content}], **extra}


async def _drain(result: StreamResult) -> list[bytes]:
    return [frame async for frame in result.stream]


@pytest.fixture
def upstream_closes(monkeypatch):
    """Record every upstream stream that actually gets closed."""
    closed = []
    original = UpstreamStream.aclose

    async def tracking_aclose(self):
        if not self._closed:
            closed.append(self.url)
        await original(self)

    monkeypatch.setattr(UpstreamStream, "aclose", tracking_aclose)
    return closed


class TestNonStreaming:
    @pytest.mark.asyncio
    async def test_success_response_and_usage(self, fake_gemini):
        fake_gemini.enqueue_json(gemini_text_response("Hello there", prompt_tokens=10, total_tokens=15))
        orchestrator = _orchestrator(fake_gemini)

        result = await orchestrator.chat_completion(_chat())

        assert isinstance(result, ChatResult)
        assert result.body["choices"][0]["message"]["content"] == "Hello there"
        assert result.body["choices"][0]["finish_reason"] == "stop"
        assert result.body["usage"] == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
        assert result.body["model"] == "gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_alias_high_effort_selects_best_tier_and_drops_effort(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)

        await orchestrator.chat_completion(_chat(reasoning_effort="high", temperature=0.2))

        request = fake_gemini.last_request
        assert request.url.path == "/v1beta/models/gemini-2.5-pro:generateContent"
        body = fake_gemini.last_json()
        assert "reasoning_effort" not in json.dumps(body)
        assert body["generationConfig"] == {"temperature": 0.2}

    @pytest.mark.asyncio
    async def test_padded_alias_is_resolved(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)

        await orchestrator.chat_completion(
            {
                "model": "  vertigo-1.0-blast ",
                "reasoning_effort": "high",
                "messages": [{"role": "user", "content": "x"}],
            }
        )

        assert fake_gemini.last_request.url.path == "/v1beta/models/gemini-2.5-pro:generateContent"

    @pytest.mark.asyncio
    async def test_non_alias_model_passes_through(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        await orchestrator.chat_completion(
            {"model": "gemini-1.5-pro", "messages": [{"role": "user", "content": "x"}]}
        )
        assert fake_gemini.last_request.url.path == "/v1beta/models/gemini-1.5-pro:generateContent"

    @pytest.mark.asyncio
    async def test_credentials_rotate_across_requests(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        for _ in range(4):
            await orchestrator.chat_completion(_chat())
        used = [request.headers["authorization"] for request in fake_gemini.requests]
        assert used == [f"Bearer {key}" for key in KEYS * 2]

    @pytest.mark.asyncio
    async def test_upstream_500_quarantines_credential(self, fake_gemini):
        fake_gemini.enqueue_json({"error": {"message": "internal"}}, status_code=500)
        orchestrator = _orchestrator(fake_gemini)

        with pytest.raises(UpstreamFailure):
            await orchestrator.chat_completion(_chat())

        snapshot = orchestrator.pool.snapshot()
        assert snapshot[0]["available"] is False
        assert snapshot[1]["available"] is True
        # No automatic retry with the other credential
        assert len(fake_gemini.requests) == 1

    @pytest.mark.asyncio
    async def test_network_error_quarantines_credential(self, fake_gemini):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        fake_gemini.enqueue(refuse)
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(UpstreamFailure):
            await orchestrator.chat_completion(_chat())
        assert orchestrator.pool.available_count() == 1

    @pytest.mark.asyncio
    async def test_translation_failure_does_not_quarantine(self, fake_gemini):
        fake_gemini.enqueue_json({"candidates": {"unexpected": True}})
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(TranslationFailure):
            await orchestrator.chat_completion(_chat())
        assert orchestrator.pool.available_count() == 2

    @pytest.mark.asyncio
    async def test_no_credential_available(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        for key in KEYS:
            orchestrator.pool.quarantine(key, 60)

        with pytest.raises(NoCredentialAvailable):
            await orchestrator.chat_completion(_chat())
        assert fake_gemini.requests == []

    @pytest.mark.asyncio
    async def test_non_boolean_stream_is_rejected(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(MalformedRequestError):
            await orchestrator.chat_completion(_chat(stream="false"))
        assert fake_gemini.requests == []

    @pytest.mark.asyncio
    async def test_malformed_request_never_reaches_upstream(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(MalformedRequestError):
            await orchestrator.chat_completion({"model": "m", "messages": "nope"})
        assert fake_gemini.requests == []


class TestConversations:
    @pytest.mark.asyncio
    async def test_new_conversation_persists_client_messages_and_reply(self, fake_gemini):
        store = MemoryConversationStore()
        fake_gemini.enqueue_json(gemini_text_response("Nice to meet you"))
        orchestrator = _orchestrator(fake_gemini, store=store)

        result = await orchestrator.chat_completion(
            {
                "model": "gemini-2.5-flash",
                "conversation_id": "conv-1",
                "messages": [
                    {"role": "system", "content": "Be kind"},
                    {"role": "user", "content": "I am Ada"},
                ],
            }
        )

        assert result.conversation_id == "conv-1"
        assert store.get("conv-1").messages == (
            Message(role="system", content="Be kind"),
            Message(role=ROLE_USER, content="I am Ada"),
            Message(role=ROLE_ASSISTANT, content="Nice to meet you"),
        )

    @pytest.mark.asyncio
    async def test_stored_history_is_injected_before_new_turn(self, fake_gemini):
        store = MemoryConversationStore()
        store.append("conv-1", ROLE_USER, "I am Ada")
        store.append("conv-1", ROLE_ASSISTANT, "Hello Ada")
        fake_gemini.enqueue_json(gemini_text_response("Your name is Ada"))
        orchestrator = _orchestrator(fake_gemini, store=store)

        await orchestrator.chat_completion(
            {"model": "gemini-2.5-flash", "messages": [{"role": "user", "content": "Who am I?"}]},
            headers={"x-conversation-id": "conv-1"},
        )

        contents = fake_gemini.last_json()["contents"]
        assert [(c["role"], c["parts"][0]["text"]) for c in contents] == [
            ("user", "I am Ada"),
            ("model", "Hello Ada"),
            ("user", "Who am I?"),
        ]
        assert [m.content for m in store.get("conv-1").messages] == [
            "I am Ada",
            "Hello Ada",
            "Who am I?",
            "Your name is Ada",
        ]

    @pytest.mark.asyncio
    async def test_generated_id_when_client_sends_none(self, fake_gemini):
        store = MemoryConversationStore()
        orchestrator = _orchestrator(fake_gemini, store=store)

        result = await orchestrator.chat_completion(_chat())

        assert result.conversation_id
        assert len(store.get(result.conversation_id).messages) == 2

    @pytest.mark.asyncio
    async def test_failed_upstream_persists_nothing(self, fake_gemini):
        store = MemoryConversationStore()
        fake_gemini.enqueue_json({}, status_code=503)
        orchestrator = _orchestrator(fake_gemini, store=store)

        with pytest.raises(UpstreamFailure):
            await orchestrator.chat_completion(_chat(conversation_id="conv-x"))
        assert store.get("conv-x").messages == ()

    @pytest.mark.asyncio
    async def test_store_read_failure_is_not_fatal(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini, store=BrokenStore())
        result = await orchestrator.chat_completion(_chat(conversation_id="conv-1"))
        assert result.body["choices"][0]["message"]["content"] == "default reply"
        assert result.conversation_id == "conv-1"

    @pytest.mark.asyncio
    async def test_store_write_failure_is_not_fatal(self, fake_gemini, caplog):
        orchestrator = _orchestrator(fake_gemini, store=ReadOnlyStore())
        with caplog.at_level("ERROR", logger="vertigo-proxy"):
            result = await orchestrator.chat_completion(_chat(conversation_id="conv-1"))
        assert result.body["choices"][0]["message"]["content"] == "default reply"
        assert "disk full" in caplog.text

    @pytest.mark.asyncio
    async def test_without_store_no_conversation_is_tracked(self, fake_gemini):
        orchestrator = _orchestrator(fake_gemini)
        result = await orchestrator.chat_completion(_chat())
        assert result.conversation_id is None
        assert await orchestrator.delete_conversation("anything") is False

    @pytest.mark.asyncio
    async def test_delete_conversation(self, fake_gemini):
        store = MemoryConversationStore()
        store.append("conv-1", ROLE_USER, "hi")
        orchestrator = _orchestrator(fake_gemini, store=store)
        assert await orchestrator.delete_conversation("conv-1") is True
        assert await orchestrator.delete_conversation("conv-1") is False


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_frames_in_order(self, fake_gemini):
        fake_gemini.enqueue_stream(["Hello", " world"])
        orchestrator = _orchestrator(fake_gemini)

        result = await orchestrator.chat_completion(_chat(stream=True))

        assert isinstance(result, StreamResult)
        frames = await _drain(result)
        assert frames[-1] == DONE_EVENT
        payloads = [json.loads(frame[len(b"data: "):]) for frame in frames[:-1]]
        assert [p["choices"][0]["delta"]["content"] for p in payloads] == ["Hello", " world"]
        assert payloads[-1]["choices"][0]["finish_reason"] == "stop"
        assert fake_gemini.last_request.url.params["alt"] == "sse"

    @pytest.mark.asyncio
    async def test_stream_open_failure_quarantines(self, fake_gemini):
        fake_gemini.enqueue_json({"error": {"message": "quota"}}, status_code=429)
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(UpstreamFailure):
            await orchestrator.chat_completion(_chat(stream=True))
        assert orchestrator.pool.available_count() == 1

    @pytest.mark.asyncio
    async def test_streamed_turns_not_persisted_by_default(self, fake_gemini):
        store = MemoryConversationStore()
        fake_gemini.enqueue_stream(["Hi"])
        orchestrator = _orchestrator(fake_gemini, store=store)

        result = await orchestrator.chat_completion(_chat(stream=True, conversation_id="conv-s"))
        await _drain(result)

        assert store.get("conv-s").messages == ()

    @pytest.mark.asyncio
    async def test_streamed_turns_persisted_when_enabled(self, fake_gemini):
        store = MemoryConversationStore()
        fake_gemini.enqueue_stream(["Hel", "lo"])
        orchestrator = _orchestrator(fake_gemini, store=store, persist_streamed_turns=True)

        result = await orchestrator.chat_completion(
            _chat("Say hello", stream=True, conversation_id="conv-s")
        )
        await _drain(result)

        assert store.get("conv-s").messages == (
            Message(role=ROLE_USER, content="Say hello"),
            Message(role=ROLE_ASSISTANT, content="Hello"),
        )

    @pytest.mark.asyncio
    async def test_disconnect_stops_stream(self, fake_gemini, upstream_closes):
        fake_gemini.enqueue_stream(["a", "b", "c"])
        orchestrator = _orchestrator(fake_gemini, store=MemoryConversationStore(), persist_streamed_turns=True)

        async def disconnected() -> bool:
            return True

        result = await orchestrator.chat_completion(
            _chat(stream=True, conversation_id="conv-d"), disconnect_checker=disconnected
        )
        frames = []
        with pytest.raises(asyncio.CancelledError):
            async for frame in result.stream:
                frames.append(frame)
        assert frames == []
        assert orchestrator.store.get("conv-d").messages == ()
        assert len(upstream_closes) == 1

    @pytest.mark.asyncio
    async def test_completed_stream_closes_upstream(self, fake_gemini, upstream_closes):
        fake_gemini.enqueue_stream(["done"])
        orchestrator = _orchestrator(fake_gemini)

        result = await orchestrator.chat_completion(_chat(stream=True))
        frames = await _drain(result)

        assert frames[-1] == DONE_EVENT
        assert upstream_closes == [str(fake_gemini.last_request.url)]

    @pytest.mark.asyncio
    async def test_unstarted_stream_closes_upstream(self, fake_gemini, upstream_closes):
        fake_gemini.enqueue_stream(["never", "read"])
        orchestrator = _orchestrator(fake_gemini)

        result = await orchestrator.chat_completion(_chat(stream=True))
        assert upstream_closes == []
        await result.stream.aclose()

        assert len(upstream_closes) == 1
        await result.stream.aclose()
        assert len(upstream_closes) == 1


class TestCompletionsAndEmbeddings:
    @pytest.mark.asyncio
    async def test_legacy_completion(self, fake_gemini):
        fake_gemini.enqueue_json(gemini_text_response("42"))
        orchestrator = _orchestrator(fake_gemini, store=MemoryConversationStore())

        result = await orchestrator.text_completion(
            {"model": "text-davinci-003", "prompt": "What is six times seven?", "max_tokens": 5}
        )

        assert result.body["object"] == "text_completion"
        assert result.body["choices"][0]["text"] == "42"
        assert fake_gemini.last_request.url.path == "/v1beta/models/gemini-2.5-flash:generateContent"
        assert fake_gemini.last_json()["generationConfig"] == {"maxOutputTokens": 5}
        assert result.conversation_id is None

    @pytest.mark.asyncio
    async def test_legacy_completion_stream(self, fake_gemini):
        fake_gemini.enqueue_stream(["4", "2"])
        orchestrator = _orchestrator(fake_gemini)
        result = await orchestrator.text_completion(
            {"model": "gpt-3.5-turbo-instruct", "prompt": "x", "stream": True}
        )
        frames = await _drain(result)
        payload = json.loads(frames[0][len(b"data: "):])
        assert payload["object"] == "text_completion"
        assert frames[-1] == DONE_EVENT

    @pytest.mark.asyncio
    async def test_embeddings_keep_requested_model_name(self, fake_gemini):
        fake_gemini.enqueue_json({"embeddings": [{"values": [0.1]}, {"values": [0.2]}]})
        orchestrator = _orchestrator(fake_gemini)

        result = await orchestrator.embeddings({"model": "text-embedding-3-small", "input": ["a", "b"]})

        assert result.body["model"] == "text-embedding-3-small"
        assert [item["embedding"] for item in result.body["data"]] == [[0.1], [0.2]]
        assert fake_gemini.last_request.url.path == (
            "/v1beta/models/text-embedding-004:batchEmbedContents"
        )

    @pytest.mark.asyncio
    async def test_embeddings_failure_quarantines(self, fake_gemini):
        fake_gemini.enqueue_json({}, status_code=500)
        orchestrator = _orchestrator(fake_gemini)
        with pytest.raises(UpstreamFailure):
            await orchestrator.embeddings({"model": "text-embedding-004", "input": "a"})
        assert orchestrator.pool.available_count() == 1
