"""Service clients and collaborators used by the indexer."""

from .embedding_provider import EmbeddingProvider, EmbeddingProviderError
from .embedding_factory import EmbeddingProviderFactory
from .adaptive_limiter import AdaptiveConcurrencyLimiter

__all__ = [
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingProviderFactory",
    "AdaptiveConcurrencyLimiter",
]
