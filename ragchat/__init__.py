# Retrieval-augmented chat core
from .chunking import chunk_text, Chunk, Document, SlidingWindowChunker, load_corpus
from .embeddings import EmbeddingClient, cosine_similarity
from .vector_store import EmbeddingStore, EmbeddedChunk, SearchResult
from .retriever import Retriever
from .memory import SessionMemory, Role, Turn
from .rate_limit import RateLimiter
from .generator import ChatGenerator
from .chat_service import ChatService, ChatResult, create_chat_service
