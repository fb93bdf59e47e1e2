"""Tests for the Ollama and VoyageAI embedding clients."""

import json
from unittest.mock import patch

import httpx
import pytest

from codebase_indexer.config import Config, OllamaConfig, VoyageAIConfig
from codebase_indexer.services.embedding_factory import EmbeddingProviderFactory
from codebase_indexer.services.embedding_provider import EmbeddingProviderError
from codebase_indexer.services.ollama import OllamaClient
from codebase_indexer.services.voyage_ai import VoyageAIClient

VOYAGE_URL = "https://api.voyageai.com/v1/embeddings"


def _response(status, json_body=None, headers=None):
    return httpx.Response(
        status,
        json=json_body,
        headers=headers,
        request=httpx.Request("POST", VOYAGE_URL),
    )


@pytest.fixture
def voyage_client(monkeypatch):
    monkeypatch.setenv("VOYAGE_API_KEY", "test-key")
    return VoyageAIClient(VoyageAIConfig(batch_size=2, retry_delay=0.0))


class TestVoyageAIClient:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)

        with pytest.raises(ValueError, match="VOYAGE_API_KEY"):
            VoyageAIClient(VoyageAIConfig())

    @patch("codebase_indexer.services.voyage_ai.httpx.Client")
    def test_batches_split_by_batch_size(self, mock_client_cls, voyage_client):
        post = mock_client_cls.return_value.__enter__.return_value.post
        post.side_effect = [
            _response(200, {"data": [{"embedding": [1.0]}, {"embedding": [2.0]}]}),
            _response(200, {"data": [{"embedding": [3.0]}]}),
        ]

        embeddings = voyage_client.get_embeddings_batch(["a", "b", "c"])

        assert embeddings == [[1.0], [2.0], [3.0]]
        assert post.call_count == 2

    @patch("codebase_indexer.services.voyage_ai.time.sleep")
    @patch("codebase_indexer.services.voyage_ai.httpx.Client")
    def test_rate_limit_is_retried(self, mock_client_cls, mock_sleep, voyage_client):
        post = mock_client_cls.return_value.__enter__.return_value.post
        post.side_effect = [
            _response(429, {"error": "slow down"}, headers={"retry-after": "2"}),
            _response(200, {"data": [{"embedding": [0.5]}]}),
        ]

        assert voyage_client.get_embedding("a") == [0.5]
        mock_sleep.assert_called_once_with(2.0)

    @patch("codebase_indexer.services.voyage_ai.httpx.Client")
    def test_unauthorized_is_not_retried(self, mock_client_cls, voyage_client):
        post = mock_client_cls.return_value.__enter__.return_value.post
        post.return_value = _response(401, {"error": "bad key"})

        with pytest.raises(EmbeddingProviderError, match="Invalid VoyageAI API key"):
            voyage_client.get_embedding("a")
        assert post.call_count == 1

    def test_model_id(self, voyage_client):
        assert voyage_client.get_model_id() == "voyage-ai::voyage-code-3"


class TestOllamaClient:
    def _client(self, handler):
        client = OllamaClient(OllamaConfig())
        client.client = httpx.Client(
            base_url="http://ollama.test", transport=httpx.MockTransport(handler)
        )
        return client

    def test_embeddings_requested_in_batches(self):
        inputs = []

        def handler(request):
            body = json.loads(request.read())
            inputs.append(body["input"])
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2]] * len(body["input"])})

        client = self._client(handler)
        client.config.batch_size = 2

        assert client.get_embeddings_batch(["a", "b", "c"]) == [[0.1, 0.2]] * 3
        assert inputs == [["a", "b"], ["c"]]

    def test_short_response_rejected(self):
        client = self._client(lambda request: httpx.Response(200, json={"embeddings": []}))

        with pytest.raises(EmbeddingProviderError, match="Expected 1 embeddings"):
            client.get_embedding("a")

    def test_missing_model_reported(self):
        client = self._client(lambda request: httpx.Response(404, json={}))

        with pytest.raises(EmbeddingProviderError, match="not found"):
            client.get_embedding("a")

    def test_connection_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = self._client(handler)

        with pytest.raises(EmbeddingProviderError, match="Failed to connect"):
            client.get_embedding("a")
        assert client.health_check() is False


class TestEmbeddingProviderFactory:
    def test_none_provider(self):
        assert EmbeddingProviderFactory.create(Config(embedding_provider="none")) is None

    def test_ollama_provider(self):
        provider = EmbeddingProviderFactory.create(Config(embedding_provider="ollama"))

        assert isinstance(provider, OllamaClient)
        provider.close()
