"""
Chat Service - The Complete Request Flow

This module wires the components together for one chat message:

COLD START (first request, or an explicit ensure_initialized()):
    corpus loader -> chunking -> embeddings (batched) -> EmbeddingStore

PER MESSAGE:
    +-------------+   +------------+   +-----------+   +----------------+
    | RateLimiter |-->| Retriever  |-->|  Session  |-->| ChatGenerator  |
    | (client id) |   | (context)  |   |  history  |   | (stream reply) |
    +-------------+   +------------+   +-----------+   +-------+--------+
                                                               |
                                       SessionMemory <---------+
                                       (user + assistant turns,
                                        only once the stream completes)

A reply that is cancelled or fails mid-stream leaves the session
untouched: neither the user turn nor a partial answer is stored.

The boundary layer (HTTP handler, SSE framing, CORS, ...) maps the
exceptions raised here to responses:
    InvalidMessageError -> 400, RateLimitExceeded -> 429,
    ConfigurationError / InitializationError -> 500
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from config.settings import Settings, get_settings
from ragchat.chunking import Document, SlidingWindowChunker, load_corpus
from ragchat.client import create_openai_client
from ragchat.embeddings import EmbeddingClient
from ragchat.exceptions import InitializationError, InvalidMessageError, RateLimitExceeded
from ragchat.generator import ChatGenerator
from ragchat.logger import get_logger
from ragchat.memory import SessionMemory
from ragchat.rate_limit import RateLimiter
from ragchat.retriever import Retriever
from ragchat.vector_store import EmbeddingStore

logger = get_logger(__name__)

CorpusLoader = Callable[[], List[Document]]


@dataclass
class ChatResult:
    """
    Result of a complete (non-streamed) chat turn.

    - answer: what the assistant said
    - context: the retrieved block that went into the prompt
    - timing: milliseconds per step
    """
    session_id: str
    message: str
    answer: str
    context: str
    timing: Dict[str, float] = field(default_factory=dict)


class ChatService:
    """
    Retrieval-augmented chat over a static corpus.

    USAGE:
        async with create_chat_service() as chat:
            async for delta in chat.stream_reply(session_id, message, client_ip):
                send(delta)

    COMPONENTS (all injected, all owned by this instance):
    - EmbeddingStore: corpus vectors, populated once
    - Retriever: query -> context block
    - SessionMemory: bounded history per session
    - RateLimiter: per-client request budget
    - ChatGenerator: prompt assembly + streaming completion
    """

    def __init__(
        self,
        store: EmbeddingStore,
        retriever: Retriever,
        memory: SessionMemory,
        rate_limiter: RateLimiter,
        generator: ChatGenerator,
        corpus_loader: CorpusLoader = load_corpus
    ):
        self.store = store
        self.retriever = retriever
        self.memory = memory
        self.rate_limiter = rate_limiter
        self.generator = generator
        self.corpus_loader = corpus_loader
        self._init_lock = asyncio.Lock()

    async def ensure_initialized(self):
        """
        Load and embed the corpus unless that already happened.

        Concurrent callers share one load: whoever gets the lock first
        reads the corpus, the others wait and find the store populated.

        Raises:
            InitializationError: loading or embedding the corpus failed (retry later)
        """
        if self.store.is_initialized:
            return

        async with self._init_lock:
            if self.store.is_initialized:
                return

            # File and PDF reads block, keep them off the event loop
            try:
                documents = await asyncio.to_thread(self.corpus_loader)
            except Exception as exc:
                logger.exception("Loading the corpus failed")
                raise InitializationError("Failed to load corpus") from exc

            await self.store.initialize(documents)

    def check_rate_limit(self, client_id: str):
        """Raise RateLimitExceeded if client_id is over its budget."""
        if self.rate_limiter.is_limited(client_id):
            raise RateLimitExceeded(client_id)

    async def stream_reply(
        self,
        session_id: str,
        message: str,
        client_id: str = "unknown"
    ) -> AsyncIterator[str]:
        """
        Answer a message, yielding content deltas as they arrive.

        Args:
            session_id: Conversation to read from and write to
            message: The user's message
            client_id: Rate limit key (typically the client IP)

        Raises:
            InvalidMessageError: message is empty or not a string
            RateLimitExceeded: client_id is over its budget
            InitializationError: the corpus could not be embedded
        """
        if not isinstance(message, str) or not message.strip():
            raise InvalidMessageError("Invalid message format")

        self.check_rate_limit(client_id)
        await self.ensure_initialized()

        context = await self.retriever.retrieve(message)
        history = self.memory.history(session_id)
        messages = self.generator.build_messages(context, history, message)

        logger.info(
            "Streaming response for session %s (%d history turns, context %s)",
            session_id, len(history), "found" if context else "empty"
        )

        parts = []
        stream = self.generator.stream(messages)
        try:
            async for content in stream:
                parts.append(content)
                yield content
        finally:
            # Runs on client disconnect too, releasing the HTTP stream
            await stream.aclose()

        self.memory.append_exchange(session_id, message, "".join(parts))
        logger.info("Response completed for session %s", session_id)

    async def reply(
        self,
        session_id: str,
        message: str,
        client_id: str = "unknown"
    ) -> ChatResult:
        """Answer a message and return the whole result at once."""
        if not isinstance(message, str) or not message.strip():
            raise InvalidMessageError("Invalid message format")

        timing = {}

        self.check_rate_limit(client_id)

        start = time.time()
        await self.ensure_initialized()
        timing["initialization_ms"] = (time.time() - start) * 1000

        start = time.time()
        context = await self.retriever.retrieve(message)
        timing["retrieval_ms"] = (time.time() - start) * 1000

        history = self.memory.history(session_id)
        messages = self.generator.build_messages(context, history, message)

        start = time.time()
        answer = await self.generator.generate(messages)
        timing["generation_ms"] = (time.time() - start) * 1000

        self.memory.append_exchange(session_id, message, answer)
        timing["total_ms"] = sum(timing.values())

        return ChatResult(
            session_id=session_id,
            message=message,
            answer=answer,
            context=context,
            timing=timing
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the running service."""
        return {
            "initialized": self.store.is_initialized,
            "indexed_documents": len(self.store.sources),
            "total_chunks": len(self.store),
            "documents": list(self.store.sources),
            "sessions": self.memory.session_count(),
            "rate_limited_keys": len(self.rate_limiter),
        }

    async def start(self):
        """Start background maintenance (rate limiter cleanup)."""
        await self.rate_limiter.start()

    async def aclose(self):
        """Stop background maintenance and close the OpenAI clients."""
        await self.rate_limiter.stop()
        await self.generator.aclose()

        # create_chat_service shares one client between both, close it once
        embedder = self.store.embedder
        if isinstance(embedder, EmbeddingClient) and embedder.client is not self.generator._client:
            await embedder.aclose()

    async def __aenter__(self) -> "ChatService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


def create_chat_service(settings: Optional[Settings] = None) -> ChatService:
    """
    Create a ChatService wired from settings.

    Raises:
        ConfigurationError: no OpenAI API key is configured
    """
    settings = settings or get_settings()

    embedder = EmbeddingClient(
        client=create_openai_client(settings.openai),
        model=settings.openai.embedding_model
    )
    store = EmbeddingStore(
        embedder,
        chunker=SlidingWindowChunker(
            chunk_size=settings.chunking.chunk_size,
            chunk_overlap=settings.chunking.chunk_overlap
        ),
        batch_size=settings.embedding.batch_size
    )
    generator = ChatGenerator(
        client=embedder.client,
        model=settings.openai.chat_model,
        temperature=settings.openai.temperature,
        max_tokens=settings.openai.max_tokens,
        assistant_name=settings.assistant_name
    )

    return ChatService(
        store=store,
        retriever=Retriever(store, embedder, top_k=settings.retrieval.top_k),
        memory=SessionMemory(max_messages=settings.memory.max_messages),
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit.max_requests,
            window_seconds=settings.rate_limit.window_seconds,
            cleanup_interval=settings.rate_limit.cleanup_seconds
        ),
        generator=generator,
        corpus_loader=lambda: load_corpus(settings.data_dir)
    )
