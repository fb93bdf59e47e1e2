"""Ollama API client for embeddings generation."""

import logging
from typing import List, Dict, Any, Optional

import httpx
from rich.console import Console

from ..config import OllamaConfig
from .embedding_provider import EmbeddingProvider, EmbeddingProviderError

logger = logging.getLogger(__name__)


class OllamaClient(EmbeddingProvider):
    """Client for interacting with Ollama API."""

    def __init__(self, config: OllamaConfig, console: Optional[Console] = None):
        super().__init__(console)
        self.config = config
        self.console = console or Console()
        self.client = httpx.Client(base_url=config.host, timeout=config.timeout)

    @property
    def max_batch_size(self) -> int:
        return self.config.batch_size

    def health_check(self) -> bool:
        """Check if Ollama service is accessible."""
        try:
            response = self.client.get("/api/tags")
            return bool(response.status_code == 200)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama health check failed: {e}")
            return False

    def list_models(self) -> List[Dict[str, Any]]:
        """List available models."""
        try:
            response = self.client.get("/api/tags")
            response.raise_for_status()
            return list(response.json().get("models", []))
        except httpx.RequestError as e:
            raise EmbeddingProviderError("ollama", f"Failed to connect to Ollama: {e}") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingProviderError("ollama", f"Ollama API error: {e}") from e

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """Generate embedding for given text."""
        embeddings = self.get_embeddings_batch([text], model)
        if not embeddings:
            raise EmbeddingProviderError("ollama", "No embedding returned from Ollama")
        return embeddings[0]

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        """Embed texts with one ``/api/embed`` call per ``batch_size`` texts."""
        model_name = model or self.config.model
        embeddings: List[List[float]] = []

        for start in range(0, len(texts), self.config.batch_size):
            batch = texts[start : start + self.config.batch_size]
            try:
                response = self.client.post(
                    "/api/embed", json={"model": model_name, "input": batch}
                )
                response.raise_for_status()
            except httpx.RequestError as e:
                raise EmbeddingProviderError("ollama", f"Failed to connect to Ollama: {e}") from e
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    raise EmbeddingProviderError(
                        "ollama", f"Model {model_name} not found. Try pulling it first."
                    ) from e
                raise EmbeddingProviderError("ollama", f"Ollama API error: {e}") from e

            returned = response.json().get("embeddings") or []
            if len(returned) != len(batch):
                raise EmbeddingProviderError(
                    "ollama", f"Expected {len(batch)} embeddings, received {len(returned)}"
                )
            embeddings.extend(list(e) for e in returned)

        return embeddings

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        return {
            "name": self.config.model,
            "provider": "ollama",
            "dimensions": 768,  # nomic-embed-text
            "max_tokens": None,
        }

    def get_provider_name(self) -> str:
        return "ollama"

    def get_current_model(self) -> str:
        return self.config.model

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
