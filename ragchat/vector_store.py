"""
Vector Store Module

WHAT IS A VECTOR STORE:
Storage for embeddings plus the text they were computed from, searchable
by meaning similarity instead of keywords.

THIS STORE:
- In-memory, populated ONCE from the corpus and then read-only
- Brute force search: the query is compared with every stored vector
- Lost when the process ends

LIFECYCLE:
    store = EmbeddingStore(embedder)
    await store.initialize(documents)   # chunk -> embed in batches -> cache
    store.get()                         # the cached EmbeddedChunks
    store.search(query_vector, top_k)   # ranked SearchResults

initialize() is idempotent and single-flight: concurrent callers wait for
the first one, later callers get the cached collection back. If embedding
fails nothing is cached and the next call starts over.

SCALING LIMIT:
Search is O(n * d) (n = chunks, d = dimensions). Fine for a few thousand
chunks; beyond that an ANN index should replace search() behind the same
retrieve() contract.
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable, List, Optional

from config.settings import get_settings
from ragchat.chunking import Chunk, Document, SlidingWindowChunker
from ragchat.embeddings import Embedder, cosine_similarity
from ragchat.exceptions import InitializationError, StoreNotInitializedError
from ragchat.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddedChunk:
    """A chunk of text paired with its embedding vector."""
    text: str
    source: str
    vector: List[float]

    @property
    def dimension(self) -> int:
        return len(self.vector)


@dataclass
class SearchResult:
    """
    A single search result.

    index is the position of the chunk in the store, used as the
    tie-breaker between equal scores.
    """
    chunk: EmbeddedChunk
    score: float
    index: int

    def __repr__(self):
        text = self.chunk.text
        preview = text[:50] + "..." if len(text) > 50 else text
        return f"SearchResult(score={self.score:.4f}, text='{preview}')"


class EmbeddingStore:
    """
    Populate-once, in-memory store of EmbeddedChunks.
    """

    def __init__(
        self,
        embedder: Embedder,
        chunker: Optional[SlidingWindowChunker] = None,
        batch_size: Optional[int] = None
    ):
        """
        Args:
            embedder: The embedding capability used for the corpus
            chunker: Splits documents (defaults to settings chunk sizes)
            batch_size: Texts per embedding request (defaults to settings)
        """
        settings = get_settings()

        self.embedder = embedder
        self.chunker = chunker or SlidingWindowChunker(
            chunk_size=settings.chunking.chunk_size,
            chunk_overlap=settings.chunking.chunk_overlap
        )
        self.batch_size = batch_size if batch_size is not None else settings.embedding.batch_size
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

        self._chunks: Optional[List[EmbeddedChunk]] = None
        self._lock = asyncio.Lock()
        self.sources: List[str] = []

    @property
    def is_initialized(self) -> bool:
        return self._chunks is not None

    @property
    def dimension(self) -> Optional[int]:
        """Shared vector dimension, None while empty or uninitialized."""
        if not self._chunks:
            return None
        return self._chunks[0].dimension

    def __len__(self):
        return len(self._chunks) if self._chunks else 0

    async def initialize(self, documents: Iterable[Document]) -> List[EmbeddedChunk]:
        """
        Chunk and embed the corpus, then cache the result.

        Args:
            documents: The corpus

        Returns:
            A copy of the cached EmbeddedChunks, in document then window order

        Raises:
            InitializationError: embedding failed; the store stays empty
        """
        if self._chunks is not None:
            return list(self._chunks)

        async with self._lock:
            # Another caller may have finished while we waited
            if self._chunks is not None:
                return list(self._chunks)

            documents = list(documents)
            logger.info("Initializing embeddings...")
            chunks = self.chunker.chunk_documents(documents)
            logger.info(
                "Processing %d chunks from %d files", len(chunks), len(documents)
            )

            try:
                vectors = await self._embed_chunks(chunks)
            except InitializationError:
                raise
            except Exception as exc:
                logger.error("Embedding initialization failed: %s", exc)
                raise InitializationError(
                    "Failed to embed corpus", {"chunks": len(chunks)}
                ) from exc

            self._chunks = [
                EmbeddedChunk(text=chunk.text, source=chunk.source, vector=vector)
                for chunk, vector in zip(chunks, vectors)
            ]
            self.sources = [document.source for document in documents]
            logger.info("Embeddings initialized successfully")
            return list(self._chunks)

    async def _embed_chunks(self, chunks: List[Chunk]) -> List[List[float]]:
        """Embed chunk texts batch by batch, keeping positional order."""
        texts = [chunk.text for chunk in chunks]
        vectors: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            batch_vectors = await self.embedder.embed(batch)
            if len(batch_vectors) != len(batch):
                raise InitializationError(
                    "Embedding batch size mismatch",
                    {"offset": i, "expected": len(batch), "received": len(batch_vectors)}
                )
            vectors.extend(list(vector) for vector in batch_vectors)

        dimensions = {len(vector) for vector in vectors}
        if len(dimensions) > 1:
            raise InitializationError(
                "Embedding vectors have inconsistent dimensions",
                {"dimensions": sorted(dimensions)}
            )

        return vectors

    def get(self) -> List[EmbeddedChunk]:
        """
        Get the cached collection.

        Raises:
            StoreNotInitializedError: initialize() has not completed
        """
        if self._chunks is None:
            raise StoreNotInitializedError()
        return list(self._chunks)

    def search(self, query_vector: List[float], top_k: int = 3) -> List[SearchResult]:
        """
        Rank stored chunks by cosine similarity to a query vector.

        Args:
            query_vector: The embedded query
            top_k: Number of results to return

        Returns:
            Up to top_k SearchResults, highest score first. Equal scores
            keep store order.

        Raises:
            StoreNotInitializedError: initialize() has not completed
            ValueError: query dimension differs from the stored vectors
        """
        results = [
            SearchResult(chunk=chunk, score=cosine_similarity(query_vector, chunk.vector), index=i)
            for i, chunk in enumerate(self.get())
        ]

        # list.sort is stable, reverse=True keeps ties in store order
        results.sort(key=lambda x: x.score, reverse=True)

        return results[:max(top_k, 0)]

    def reset(self):
        """Drop the cached collection (the next initialize() re-embeds)."""
        self._chunks = None
        self.sources = []
