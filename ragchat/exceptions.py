"""
Exception hierarchy for the chat core.

ERROR KINDS:
- ConfigurationError: missing credentials / bad settings (fatal, no retry)
- EmbeddingError: the embeddings API call failed
- InitializationError: corpus embedding failed, store stays empty
- StoreNotInitializedError: store read before initialize() finished
- RateLimitExceeded: a client went over its request budget
- InvalidMessageError: the user message is empty or not a string

Retrieval failures are not listed: the retriever turns them into an
empty context instead of raising.
"""

from typing import Any, Dict, Optional

from config.settings import ConfigurationError


class RagChatError(Exception):
    """Base exception for all chat core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class EmbeddingError(RagChatError):
    """Raised when the embedding capability fails."""


class InitializationError(RagChatError):
    """Raised when the embedding store could not be populated."""


class StoreNotInitializedError(RagChatError):
    """Raised when the embedding store is read before initialization."""

    def __init__(self):
        super().__init__("Embedding store has not been initialized")


class RateLimitExceeded(RagChatError):
    """Raised when a client key is over its request budget."""

    def __init__(self, key: str):
        super().__init__("Rate limit exceeded. Try again later.", {"key": key})
        self.key = key


class InvalidMessageError(RagChatError):
    """Raised when the user message is missing or malformed."""


__all__ = [
    "ConfigurationError",
    "RagChatError",
    "EmbeddingError",
    "InitializationError",
    "StoreNotInitializedError",
    "RateLimitExceeded",
    "InvalidMessageError",
]
