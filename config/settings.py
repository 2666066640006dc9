"""
Configuration settings for the RAG chat core.

WHAT LIVES HERE:
- OpenAI credentials and model names (chat + embeddings)
- Chunking, embedding batch, retrieval, memory and rate-limit parameters
- Logging level

Everything is read from environment variables, with a .env file loaded at
import time. Missing credentials are NOT an error here: only the code that
actually builds an OpenAI client needs them (see ragchat.client), so the
in-memory components stay usable without any secrets.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid."""


@dataclass
class OpenAIConfig:
    """
    Configuration for the OpenAI services.

    When azure_endpoint is set the Azure flavour of the client is used,
    and chat_model / embedding_model are interpreted as deployment names.
    """
    api_key: Optional[str] = None
    azure_endpoint: Optional[str] = None
    api_version: str = "2024-02-15-preview"
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = 0.7
    max_tokens: int = 1000

    @property
    def use_azure(self) -> bool:
        return bool(self.azure_endpoint)


@dataclass
class ChunkingConfig:
    """
    Configuration for document chunking.

    chunk_size=800 / chunk_overlap=200: each window shares its last 200
    characters with the start of the next one.
    """
    chunk_size: int = 800        # Characters per chunk
    chunk_overlap: int = 200     # Overlap between chunks


@dataclass
class EmbeddingConfig:
    batch_size: int = 100        # Texts per embeddings request


@dataclass
class RetrievalConfig:
    top_k: int = 3               # Number of chunks to retrieve


@dataclass
class MemoryConfig:
    max_messages: int = 20       # Turns kept per session


@dataclass
class RateLimitConfig:
    """
    Sliding-window rate limiting.

    At most max_requests per key within the trailing window_seconds.
    Keys left without any timestamp are swept every cleanup_seconds.
    """
    max_requests: int = 60
    window_seconds: float = 60.0
    cleanup_seconds: float = 300.0


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Settings:
    """
    Main settings container.

    Organized by domain so each component only receives the group it needs.
    """
    openai: OpenAIConfig
    chunking: ChunkingConfig
    embedding: EmbeddingConfig
    retrieval: RetrievalConfig
    memory: MemoryConfig
    rate_limit: RateLimitConfig
    logging: LoggingConfig
    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    assistant_name: str = "our company"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    """
    Load settings from environment variables.

    OPTIONAL ENVIRONMENT VARIABLES:
    - OPENAI_API_KEY: key for api.openai.com
    - AZURE_OPENAI_ENDPOINT / AZURE_OPENAI_API_KEY: use Azure OpenAI instead
    - CHAT_MODEL, EMBEDDING_MODEL: model (or deployment) names
    - CHUNK_SIZE, CHUNK_OVERLAP, EMBEDDING_BATCH_SIZE, RETRIEVAL_TOP_K
    - MAX_MESSAGES_PER_SESSION
    - RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS, RATE_LIMIT_CLEANUP_SECONDS
    - LOG_LEVEL, DATA_DIR, ASSISTANT_NAME

    Raises:
        ConfigurationError: if a numeric value is malformed or out of range
    """
    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT") or None
    api_key = (
        os.getenv("AZURE_OPENAI_API_KEY") if azure_endpoint else None
    ) or os.getenv("OPENAI_API_KEY") or None

    chunking = ChunkingConfig(
        chunk_size=_env_int("CHUNK_SIZE", 800),
        chunk_overlap=_env_int("CHUNK_OVERLAP", 200),
    )
    if not 0 < chunking.chunk_overlap < chunking.chunk_size:
        raise ConfigurationError(
            f"CHUNK_OVERLAP must be between 0 and CHUNK_SIZE (exclusive). "
            f"Got size={chunking.chunk_size}, overlap={chunking.chunk_overlap}."
        )

    embedding = EmbeddingConfig(batch_size=_env_int("EMBEDDING_BATCH_SIZE", 100))
    retrieval = RetrievalConfig(top_k=_env_int("RETRIEVAL_TOP_K", 3))
    memory = MemoryConfig(max_messages=_env_int("MAX_MESSAGES_PER_SESSION", 20))
    rate_limit = RateLimitConfig(
        max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 60),
        window_seconds=_env_float("RATE_LIMIT_WINDOW_SECONDS", 60.0),
        cleanup_seconds=_env_float("RATE_LIMIT_CLEANUP_SECONDS", 300.0),
    )

    for name, value in (
        ("EMBEDDING_BATCH_SIZE", embedding.batch_size),
        ("RETRIEVAL_TOP_K", retrieval.top_k),
        ("MAX_MESSAGES_PER_SESSION", memory.max_messages),
        ("RATE_LIMIT_MAX_REQUESTS", rate_limit.max_requests),
        ("RATE_LIMIT_WINDOW_SECONDS", rate_limit.window_seconds),
        ("RATE_LIMIT_CLEANUP_SECONDS", rate_limit.cleanup_seconds),
    ):
        if value <= 0:
            raise ConfigurationError(f"{name} must be positive, got {value}")

    data_dir = os.getenv("DATA_DIR")

    return Settings(
        openai=OpenAIConfig(
            api_key=api_key,
            azure_endpoint=azure_endpoint,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        ),
        chunking=chunking,
        embedding=embedding,
        retrieval=retrieval,
        memory=memory,
        rate_limit=rate_limit,
        logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO").upper()),
        data_dir=Path(data_dir) if data_dir else Path.cwd() / "data",
        assistant_name=os.getenv("ASSISTANT_NAME", "our company"),
    )


# Singleton pattern - load settings once and reuse
_settings = None

def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings():
    """Forget the cached settings (next get_settings() reloads from env)."""
    global _settings
    _settings = None
