"""
Embeddings Module

WHAT ARE EMBEDDINGS:
Embeddings convert text into vectors (lists of numbers) that capture meaning.
Similar texts have similar vectors, so related content can be found with
a distance calculation instead of keyword matching.

EXAMPLE:
"How do I return a product?"  ->  [0.023, -0.041, 0.089, ..., 0.012]
"What's your return policy?"  ->  [0.025, -0.038, 0.091, ..., 0.010]
                                  ^ Very similar vectors

DISTANCE METRIC: cosine similarity
  - 1.0 = identical direction
  - 0.0 = perpendicular (unrelated), also used when a vector is all zeros
  - -1.0 = opposite

The embedding model itself is an external service. Anything with an async
embed(texts) -> vectors method can stand in for it (see Embedder).
"""

from typing import List, Optional, Protocol, Sequence

import numpy as np
from openai import OpenAIError

from config.settings import get_settings
from ragchat.client import AsyncClient, create_openai_client
from ragchat.exceptions import EmbeddingError
from ragchat.logger import get_logger

logger = get_logger(__name__)


class Embedder(Protocol):
    """The embedding-generation capability the core depends on."""

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per input text, in input order."""
        ...


class EmbeddingClient:
    """
    Client for generating embeddings with the OpenAI embeddings API.

    Usage:
        client = EmbeddingClient()
        vectors = await client.embed(["first text", "second text"])
    """

    def __init__(
        self,
        client: Optional[AsyncClient] = None,
        model: Optional[str] = None,
    ):
        """
        Initialize the embedding client.

        Args:
            client: Async OpenAI client (defaults to one built from settings)
            model: Embedding model or Azure deployment (defaults to settings)
        """
        settings = get_settings()

        self.model = model or settings.openai.embedding_model
        self.client = client or create_openai_client(settings.openai)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts in a single API call.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in the same order as texts

        Raises:
            EmbeddingError: the API call failed or returned the wrong count
        """
        texts = list(texts)
        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(
                input=texts,
                model=self.model
            )
        except OpenAIError as exc:
            logger.error("Error generating embeddings: %s", exc)
            raise EmbeddingError(
                "Embedding request failed",
                {"model": self.model, "batch_size": len(texts)}
            ) from exc

        # The API reports an index per item, don't trust response order
        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingError(
                "Embedding response size mismatch",
                {"expected": len(texts), "received": len(data)}
            )

        return [list(item.embedding) for item in data]

    async def aclose(self):
        await self.client.close()


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    FORMULA:
    cosine_similarity = (A . B) / (||A|| * ||B||)

    Returns 0.0 when either vector has zero magnitude. The result is
    clipped to [-1, 1] to absorb floating point rounding.

    Raises:
        ValueError: the vectors have different dimensions
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)

    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape} vs {b.shape}")

    magnitude_a = np.linalg.norm(a)
    magnitude_b = np.linalg.norm(b)

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    similarity = np.dot(a, b) / (magnitude_a * magnitude_b)
    return float(np.clip(similarity, -1.0, 1.0))
