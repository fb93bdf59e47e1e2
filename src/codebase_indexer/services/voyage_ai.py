"""VoyageAI API client for embeddings generation."""

import logging
import os
import time
from typing import List, Dict, Any, Optional

import httpx
from rich.console import Console

from ..config import VoyageAIConfig
from .embedding_provider import EmbeddingProvider, EmbeddingProviderError

logger = logging.getLogger(__name__)

MODEL_DIMENSIONS = {
    "voyage-code-3": 1024,
    "voyage-large-2": 1536,
    "voyage-2": 1024,
    "voyage-code-2": 1536,
    "voyage-law-2": 1024,
}


class VoyageAIClient(EmbeddingProvider):
    """Client for interacting with VoyageAI API."""

    def __init__(self, config: VoyageAIConfig, console: Optional[Console] = None):
        super().__init__(console)
        self.config = config
        self.console = console or Console()

        self.api_key = os.getenv("VOYAGE_API_KEY")
        if not self.api_key:
            raise ValueError(
                "VOYAGE_API_KEY environment variable is required for VoyageAI. "
                "Set it with: export VOYAGE_API_KEY=your_api_key_here"
            )

    @property
    def max_batch_size(self) -> int:
        return self.config.batch_size

    def health_check(self, test_api: bool = False) -> bool:
        """Check if VoyageAI service is configured correctly.

        Args:
            test_api: If True, make an actual API call to test connectivity.
                     If False, only check configuration validity.
        """
        config_valid = bool(
            self.api_key and self.config.model and self.config.api_endpoint
        )
        if not config_valid:
            return False

        if test_api:
            try:
                self._make_sync_request(["test"])
            except EmbeddingProviderError as e:
                logger.debug(f"VoyageAI health check failed: {e}")
                return False

        return True

    def _backoff(self, attempt: int) -> float:
        return self.config.retry_delay * (
            2**attempt if self.config.exponential_backoff else 1
        )

    def _make_sync_request(
        self, texts: List[str], model: Optional[str] = None
    ) -> Dict[str, Any]:
        """Make synchronous request to VoyageAI API."""
        model_name = model or self.config.model
        payload = {"input": texts, "model": model_name}

        last_exception: Optional[Exception] = None
        for attempt in range(self.config.max_retries + 1):
            try:
                # New client per request; requests arrive from worker threads
                with httpx.Client(
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.config.timeout,
                ) as client:
                    response = client.post(self.config.api_endpoint, json=payload)
                response.raise_for_status()

                result = response.json()
                if isinstance(result, dict):
                    return result
                raise EmbeddingProviderError(
                    "voyage-ai", f"Unexpected response format: {type(result)}"
                )

            except httpx.HTTPStatusError as e:
                last_exception = e
                status = e.response.status_code
                if status == 429:
                    retry_after = e.response.headers.get("retry-after")
                    wait_time = float(retry_after) if retry_after else self._backoff(attempt)
                    wait_time = min(wait_time, 300.0)
                elif status >= 500:
                    wait_time = self._backoff(attempt)
                else:
                    # Client error, don't retry
                    break

                if attempt < self.config.max_retries:
                    logger.warning(
                        f"VoyageAI returned HTTP {status}, retrying in {wait_time:.1f}s "
                        f"(attempt {attempt + 1}/{self.config.max_retries})"
                    )
                    time.sleep(wait_time)
                    continue
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.config.max_retries:
                    time.sleep(self.config.retry_delay)
                    continue

        if isinstance(last_exception, httpx.HTTPStatusError):
            status = last_exception.response.status_code
            if status == 401:
                raise EmbeddingProviderError(
                    "voyage-ai",
                    "Invalid VoyageAI API key. Check VOYAGE_API_KEY environment variable.",
                ) from last_exception
            if status == 429:
                raise EmbeddingProviderError(
                    "voyage-ai",
                    "VoyageAI rate limit exceeded. Try lowering vectors.max_concurrency.",
                ) from last_exception
            raise EmbeddingProviderError(
                "voyage-ai",
                f"VoyageAI API error (HTTP {status}): {last_exception}. "
                f"Response: {last_exception.response.text}",
            ) from last_exception

        raise EmbeddingProviderError(
            "voyage-ai", f"Failed to connect to VoyageAI: {last_exception}"
        ) from last_exception

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """Generate embedding for given text."""
        embeddings = self.get_embeddings_batch([text], model)
        if not embeddings:
            raise EmbeddingProviderError("voyage-ai", "No embedding returned from VoyageAI")
        return embeddings[0]

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        """Generate embeddings for multiple texts, splitting by batch size."""
        if not texts:
            return []

        all_embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.config.batch_size):
            batch = texts[start : start + self.config.batch_size]
            result = self._make_sync_request(batch, model)
            data = result.get("data") or []
            if len(data) != len(batch):
                raise EmbeddingProviderError(
                    "voyage-ai",
                    f"Expected {len(batch)} embeddings, received {len(data)}",
                )
            all_embeddings.extend(list(item["embedding"]) for item in data)
        return all_embeddings

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        model_name = self.config.model
        return {
            "name": model_name,
            "provider": "voyage-ai",
            "dimensions": MODEL_DIMENSIONS.get(model_name, 1024),
            "max_tokens": 16000,
            "supports_batch": True,
            "api_endpoint": self.config.api_endpoint,
        }

    def get_provider_name(self) -> str:
        return "voyage-ai"

    def get_current_model(self) -> str:
        return self.config.model
