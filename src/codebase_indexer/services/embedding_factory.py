"""Factory for creating embedding providers based on configuration."""

from typing import Optional, List

from rich.console import Console

from ..config import Config
from .embedding_provider import EmbeddingProvider
from .ollama import OllamaClient
from .voyage_ai import VoyageAIClient


class EmbeddingProviderFactory:
    """Factory for creating embedding providers."""

    @staticmethod
    def create(
        config: Config, console: Optional[Console] = None
    ) -> Optional[EmbeddingProvider]:
        """Create an embedding provider based on configuration.

        Args:
            config: Main configuration object
            console: Optional console for output

        Returns:
            Configured embedding provider, or None when vectors are not wanted

        Raises:
            ValueError: If provider is not supported
        """
        provider_name = config.embedding_provider

        if provider_name == "none":
            return None
        if provider_name == "voyage-ai":
            return VoyageAIClient(config.voyage_ai, console)
        if provider_name == "ollama":
            return OllamaClient(config.ollama, console)

        raise ValueError(f"Unsupported embedding provider: {provider_name}")

    @staticmethod
    def get_available_providers() -> List[str]:
        return ["voyage-ai", "ollama", "none"]
