"""
Retriever Module

Query -> embedding -> nearest stored chunks -> one context block:

    [Source: handbook.txt]
    ...chunk text...

    ---

    [Source: faq.txt]
    ...chunk text...

retrieve() never raises: if the query can't be embedded or the store is
empty or not ready, the chat goes on without context ("").
"""

from typing import List, Optional

from config.settings import get_settings
from ragchat.embeddings import Embedder
from ragchat.logger import get_logger
from ragchat.vector_store import EmbeddingStore, SearchResult

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def format_context(results: List[SearchResult]) -> str:
    """Join search results into a context block, each tagged with its source."""
    return CONTEXT_SEPARATOR.join(
        f"[Source: {result.chunk.source}]\n{result.chunk.text}"
        for result in results
    )


class Retriever:
    """Find the stored chunks most relevant to a query."""

    def __init__(
        self,
        store: EmbeddingStore,
        embedder: Embedder,
        top_k: Optional[int] = None
    ):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k if top_k is not None else get_settings().retrieval.top_k

    async def search(self, query: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """
        Embed the query and rank the stored chunks against it.

        Unlike retrieve(), errors propagate.
        """
        query_vectors = await self.embedder.embed([query])
        return self.store.search(query_vectors[0], top_k if top_k is not None else self.top_k)

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> str:
        """
        Build the context block for a query.

        Args:
            query: The user message
            top_k: Override the default number of chunks

        Returns:
            The formatted context, or "" if anything went wrong
        """
        try:
            results = await self.search(query, top_k)
        except Exception:
            logger.exception("Error retrieving context")
            return ""

        logger.debug(
            "Retrieved %d chunks (top score %s)",
            len(results),
            f"{results[0].score:.4f}" if results else "n/a"
        )
        return format_context(results)
