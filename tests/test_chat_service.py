"""
Tests for the chat request flow.

Real in-memory components, fake embedding capability, mocked chat client.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import ChunkingConfig, ConfigurationError, load_settings
from ragchat.chat_service import ChatService, create_chat_service
from ragchat.chunking import Document, SlidingWindowChunker, load_corpus
from ragchat.embeddings import EmbeddingClient
from ragchat.exceptions import InitializationError, InvalidMessageError, RateLimitExceeded
from ragchat.generator import ChatGenerator
from ragchat.memory import Role, SessionMemory
from ragchat.rate_limit import RateLimiter
from ragchat.retriever import Retriever
from ragchat.vector_store import EmbeddingStore
from tests.conftest import FakeEmbedder, make_chat_client

DOCUMENTS = [Document(source="hours.txt", text="We are open 9 to 5 on weekdays.")]


def _service(
    deltas=("We open ", "at 9."),
    embedder=None,
    max_requests=60,
    corpus_loader=None
) -> ChatService:
    embedder = embedder or FakeEmbedder()
    store = EmbeddingStore(
        embedder,
        chunker=SlidingWindowChunker(chunk_size=800, chunk_overlap=200),
        batch_size=100,
    )
    return ChatService(
        store=store,
        retriever=Retriever(store, embedder, top_k=3),
        memory=SessionMemory(max_messages=20),
        rate_limiter=RateLimiter(max_requests=max_requests, window_seconds=60.0, cleanup_interval=300.0),
        generator=ChatGenerator(
            client=make_chat_client(list(deltas)),
            model="test-chat",
            temperature=0.7,
            max_tokens=100,
            assistant_name="Acme",
        ),
        corpus_loader=corpus_loader or (lambda: DOCUMENTS),
    )


class TestStreamReply:

    @pytest.mark.asyncio
    async def test_streams_and_stores_exchange(self):
        service = _service()

        deltas = [d async for d in service.stream_reply("s1", "When do you open?", "1.2.3.4")]

        assert deltas == ["We open ", "at 9."]
        assert [(t.role, t.content) for t in service.memory.history("s1")] == [
            (Role.USER, "When do you open?"),
            (Role.ASSISTANT, "We open at 9."),
        ]

    @pytest.mark.asyncio
    async def test_prompt_contains_context_and_history(self):
        service = _service()
        service.memory.append_exchange("s1", "Hi", "Hello!")

        _ = [d async for d in service.stream_reply("s1", "When do you open?")]

        create = service.generator.client.chat.completions.create
        messages = create.await_args.kwargs["messages"]
        assert "[Source: hours.txt]\nWe are open 9 to 5 on weekdays." in messages[0]["content"]
        assert messages[1:] == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "When do you open?"},
        ]

    @pytest.mark.asyncio
    async def test_cancelled_stream_discards_turns(self):
        service = _service(deltas=["partial ", "answer"])

        stream = service.stream_reply("s1", "When do you open?")
        assert await stream.__anext__() == "partial "
        await stream.aclose()

        assert service.memory.history("s1") == []
        assert service.generator.client.stream.closed

    @pytest.mark.asyncio
    async def test_generation_failure_discards_turns(self):
        service = _service()
        service.generator.client.chat.completions.create.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            _ = [d async for d in service.stream_reply("s1", "When do you open?")]

        assert service.memory.history("s1") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", None, 42])
    async def test_invalid_message_rejected(self, message):
        service = _service()

        with pytest.raises(InvalidMessageError):
            _ = [d async for d in service.stream_reply("s1", message)]

    @pytest.mark.asyncio
    async def test_rate_limited_client_rejected(self):
        service = _service(max_requests=1)
        _ = [d async for d in service.stream_reply("s1", "first", "9.9.9.9")]

        with pytest.raises(RateLimitExceeded) as exc_info:
            _ = [d async for d in service.stream_reply("s1", "second", "9.9.9.9")]

        assert exc_info.value.key == "9.9.9.9"
        assert len(service.memory.history("s1")) == 2

    @pytest.mark.asyncio
    async def test_retrieval_failure_continues_without_context(self):
        embedder = FakeEmbedder()
        service = _service(embedder=embedder)
        await service.ensure_initialized()
        embedder.fail = True

        deltas = [d async for d in service.stream_reply("s1", "When do you open?")]

        assert deltas == ["We open ", "at 9."]
        messages = service.generator.client.chat.completions.create.await_args.kwargs["messages"]
        assert messages[0]["content"].endswith("CONTEXT:\n")


class TestInitialization:

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_embed_corpus_once(self):
        embedder = FakeEmbedder(delay=0.01)
        loader = MagicMock(return_value=DOCUMENTS)
        service = _service(embedder=embedder, corpus_loader=loader)

        await asyncio.gather(*[service.ensure_initialized() for _ in range(5)])

        corpus_calls = [call for call in embedder.calls if call == [DOCUMENTS[0].text]]
        assert len(corpus_calls) == 1
        assert loader.call_count == 1
        assert service.store.is_initialized

    @pytest.mark.asyncio
    async def test_initialization_failure_propagates_and_retries(self):
        embedder = FakeEmbedder(fail=True)
        service = _service(embedder=embedder)

        with pytest.raises(InitializationError):
            _ = [d async for d in service.stream_reply("s1", "hello")]
        assert not service.store.is_initialized

        embedder.fail = False
        deltas = [d async for d in service.stream_reply("s1", "hello")]

        assert deltas == ["We open ", "at 9."]
        assert service.store.is_initialized

    @pytest.mark.asyncio
    async def test_unreadable_corpus_file_is_skipped(self, tmp_path):
        (tmp_path / "hours.txt").write_text(DOCUMENTS[0].text, encoding="utf-8")
        (tmp_path / "bad.txt").write_bytes(b"\xff\xfe\xfa")
        service = _service(corpus_loader=lambda: load_corpus(str(tmp_path)))

        deltas = [d async for d in service.stream_reply("s1", "When do you open?")]

        assert deltas == ["We open ", "at 9."]
        assert service.store.sources == ["hours.txt"]

    @pytest.mark.asyncio
    async def test_loader_failure_becomes_initialization_error(self):
        loader = MagicMock(side_effect=RuntimeError("disk gone"))
        service = _service(corpus_loader=loader)

        with pytest.raises(InitializationError, match="Failed to load corpus"):
            await service.ensure_initialized()

        assert not service.store.is_initialized


class TestReply:

    @pytest.mark.asyncio
    async def test_reply_returns_result(self):
        service = _service()

        result = await service.reply("s1", "When do you open?")

        assert result.answer == "We open at 9."
        assert result.context.startswith("[Source: hours.txt]")
        assert set(result.timing) == {"initialization_ms", "retrieval_ms", "generation_ms", "total_ms"}
        assert len(service.memory.history("s1")) == 2

    @pytest.mark.asyncio
    async def test_stats(self):
        service = _service()
        await service.reply("s1", "When do you open?", "1.1.1.1")

        stats = service.get_stats()

        assert stats == {
            "initialized": True,
            "indexed_documents": 1,
            "total_chunks": 1,
            "documents": ["hours.txt"],
            "sessions": 1,
            "rate_limited_keys": 1,
        }


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_starts_and_stops_cleanup(self):
        service = _service()

        async with service as chat:
            assert chat.rate_limiter.running

        assert not service.rate_limiter.running
        service.generator.client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_closes_separate_embedding_client(self):
        embedding_client = MagicMock()
        embedding_client.close = AsyncMock()
        service = _service(embedder=EmbeddingClient(client=embedding_client, model="test-embedding"))

        await service.aclose()

        embedding_client.close.assert_awaited_once()
        service.generator.client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_closes_shared_client_once(self):
        service = _service()
        shared = service.generator.client
        embedder = EmbeddingClient(client=shared, model="test-embedding")
        service.store.embedder = embedder

        await service.aclose()

        shared.close.assert_awaited_once()

    def test_create_chat_service_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)
        monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            create_chat_service(load_settings())

    def test_create_chat_service_wires_settings(self, monkeypatch, tmp_path):
        monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("RETRIEVAL_TOP_K", "5")
        monkeypatch.setenv("MAX_MESSAGES_PER_SESSION", "8")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        settings = load_settings()

        service = create_chat_service(settings)

        assert service.retriever.top_k == 5
        assert service.memory.max_messages == 8
        assert service.store.chunker.chunk_size == ChunkingConfig().chunk_size
        assert service.retriever.embedder.client is service.generator.client
        assert service.corpus_loader() == []
