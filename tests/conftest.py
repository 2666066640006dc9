"""
Shared test fixtures.

Provides: a deterministic fake embedder, a fake streaming OpenAI client,
and small corpora. No network access is needed by any test.
"""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from ragchat.chunking import Document


class FakeEmbedder:
    """
    Embedder stand-in.

    Texts found in `vectors` get that vector; any other text gets a
    3-dimensional vector derived from its length. Every call is recorded.
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        fail: bool = False,
        delay: float = 0.0
    ):
        self.vectors = vectors or {}
        self.fail = fail
        self.delay = delay
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return [self.vectors.get(text, [float(len(text)), 1.0, 0.0]) for text in texts]


class FakeStream:
    """Minimal async stream of chat-completion chunks."""

    def __init__(self, deltas: Sequence[Optional[str]]):
        self.deltas = list(deltas)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for delta in self.deltas:
            yield SimpleNamespace(
                choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))]
            )

    async def close(self):
        self.closed = True


def make_chat_client(deltas: Sequence[Optional[str]]) -> MagicMock:
    """Mock AsyncOpenAI client whose chat completion streams `deltas`."""
    client = MagicMock()
    client.stream = FakeStream(deltas)
    client.chat.completions.create = AsyncMock(return_value=client.stream)
    client.close = AsyncMock()
    return client


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def sample_documents() -> List[Document]:
    return [
        Document(source="handbook.txt", text="a" * 1000),
        Document(source="faq.txt", text="b" * 300),
    ]
