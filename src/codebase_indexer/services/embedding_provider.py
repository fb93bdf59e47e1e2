"""Abstract base class for embedding providers."""

from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any


class EmbeddingProviderError(RuntimeError):
    """An embedding request failed after the provider's own retries."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    def __init__(self, console=None):
        self.console = console

    @abstractmethod
    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed
            model: Optional model override

        Returns:
            List of floats representing the embedding vector
        """
        pass

    @abstractmethod
    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        """Generate embeddings for multiple texts in batch.

        Args:
            texts: List of texts to embed
            model: Optional model override

        Returns:
            List of embedding vectors (one per input text)

        Raises:
            EmbeddingProviderError: If the provider cannot produce embeddings
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the embedding provider is healthy and accessible.

        Returns:
            True if provider is healthy, False otherwise
        """
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model.

        Returns:
            Dictionary with model information (dimensions, max_tokens, etc.)
        """
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of this embedding provider.

        Returns:
            Provider name (e.g., "ollama", "voyage-ai")
        """
        pass

    @abstractmethod
    def get_current_model(self) -> str:
        """Get the current active model name.

        Returns:
            Model name
        """
        pass

    @property
    @abstractmethod
    def max_batch_size(self) -> int:
        """Largest number of texts accepted by one get_embeddings_batch call."""
        pass

    def get_model_id(self) -> str:
        """Identifier that changes whenever vectors become incompatible."""
        return f"{self.get_provider_name()}::{self.get_current_model()}"

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
