"""Tests for the async embedding client.

Tests cover:
- Request construction (endpoint, bearer credential, model/input/dimensions body)
- Single and batch embedding, usage-based token counts, index ordering
- Error mapping: non-2xx -> ProviderError, timeout/connect -> ProviderUnavailable
- Dimension and item-count validation of provider responses

The provider is replaced with httpx.MockTransport; no network access.
"""

from __future__ import annotations

import json

import httpx
import pytest
from pydantic import SecretStr

from src.kb_retrieval.config import EmbeddingConfig
from src.kb_retrieval.embeddings import EmbeddingClient, estimate_token_count
from src.kb_retrieval.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    ProviderError,
    ProviderUnavailable,
)


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    return EmbeddingConfig(
        model="text-embedding-3-small",
        dimensions=3,
        api_key="test-key",
        base_url="https://embeddings.test/v1/",
        timeout=5,
    )


def _ok(vectors: list[list[float]], total_tokens: int = 6, reverse: bool = False) -> dict:
    data = [{"object": "embedding", "index": i, "embedding": v} for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return {"object": "list", "data": data, "usage": {"prompt_tokens": total_tokens, "total_tokens": total_tokens}}


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response | Exception):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _client(handler: Recorder) -> EmbeddingClient:
    return EmbeddingClient(transport=httpx.MockTransport(handler))


# ── Test: Request construction ──────────────────────────────────────────────


class TestRequest:
    @pytest.mark.asyncio
    async def test_posts_to_embeddings_endpoint_with_bearer(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[0.1, 0.2, 0.3]])))

        await _client(handler).embed("hello world", embedding_config)

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://embeddings.test/v1/embeddings"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert json.loads(request.content) == {
            "model": "text-embedding-3-small",
            "input": "hello world",
            "dimensions": 3,
        }

    @pytest.mark.asyncio
    async def test_batch_sends_list_input(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[1, 0, 0], [0, 1, 0]])))

        await _client(handler).embed_batch(["a", "b"], embedding_config)

        assert json.loads(handler.requests[0].content)["input"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_api_key_is_configuration_error(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[1, 0, 0]])))
        config = embedding_config.model_copy(update={"api_key": SecretStr("")})

        with pytest.raises(ConfigurationError):
            await _client(handler).embed("hello", config)
        assert handler.requests == []


# ── Test: Successful responses ──────────────────────────────────────────────


class TestEmbed:
    @pytest.mark.asyncio
    async def test_single_embedding(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[0.1, 0.2, 0.3]], total_tokens=4)))

        result = await _client(handler).embed("hello world", embedding_config)

        assert result.embedding == [0.1, 0.2, 0.3]
        assert len(result.embedding) == embedding_config.dimensions
        assert result.token_count == 4
        assert result.model == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_call(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[1, 0, 0]])))

        with pytest.raises(ValueError):
            await _client(handler).embed("", embedding_config)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_batch_preserves_input_order_by_index(self, embedding_config):
        handler = Recorder(
            httpx.Response(200, json=_ok([[1, 0, 0], [0, 1, 0], [0, 0, 1]], reverse=True))
        )

        results = await _client(handler).embed_batch(["a", "b", "c"], embedding_config)

        assert [r.embedding for r in results] == [[1, 0, 0], [0, 1, 0], [0, 0, 1]]

    @pytest.mark.asyncio
    async def test_batch_splits_usage_evenly_rounding_up(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[1, 0, 0], [0, 1, 0], [0, 0, 1]], total_tokens=10)))

        results = await _client(handler).embed_batch(["a", "b", "c"], embedding_config)

        assert [r.token_count for r in results] == [4, 4, 4]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_call(self, embedding_config):
        handler = Recorder(httpx.Response(500))

        assert await _client(handler).embed_batch([], embedding_config) == []
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_null_usage_counts_zero_tokens(self, embedding_config):
        batch = Recorder(httpx.Response(200, json={**_ok([[1, 0, 0], [0, 1, 0]]), "usage": None}))
        one = Recorder(httpx.Response(200, json={**_ok([[1, 0, 0]]), "usage": None}))

        results = await _client(batch).embed_batch(["a", "b"], embedding_config)
        single = await _client(one).embed("a", embedding_config)

        assert [r.token_count for r in results] == [0, 0]
        assert single.token_count == 0


# ── Test: Error mapping ─────────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable_provider_error(self, embedding_config):
        handler = Recorder(httpx.Response(429, text='{"error": "rate limited"}'))

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).embed("hello", embedding_config)

        assert exc_info.value.status == 429
        assert "rate limited" in exc_info.value.body
        assert exc_info.value.retryable is True
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self, embedding_config):
        handler = Recorder(httpx.Response(401, text="invalid api key"))

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).embed("hello", embedding_config)

        assert exc_info.value.status == 401
        assert exc_info.value.retryable is False
        assert str(exc_info.value) == "Embedding API error: 401 - invalid api key"

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, embedding_config):
        handler = Recorder(httpx.Response(503, text="overloaded"))

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).embed("hello", embedding_config)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_error_body_is_truncated(self, embedding_config):
        handler = Recorder(httpx.Response(500, text="x" * 5000))

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).embed("hello", embedding_config)
        assert len(exc_info.value.body) == 2000

    @pytest.mark.asyncio
    async def test_timeout_is_provider_unavailable(self, embedding_config):
        handler = Recorder(httpx.ReadTimeout("timed out"))

        with pytest.raises(ProviderUnavailable):
            await _client(handler).embed("hello", embedding_config)

    @pytest.mark.asyncio
    async def test_connection_failure_is_provider_unavailable(self, embedding_config):
        handler = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(ProviderUnavailable):
            await _client(handler).embed("hello", embedding_config)

    @pytest.mark.asyncio
    async def test_wrong_dimensions_raise(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[0.1, 0.2]])))

        with pytest.raises(DimensionMismatchError) as exc_info:
            await _client(handler).embed("hello", embedding_config)
        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2

    @pytest.mark.asyncio
    async def test_item_count_mismatch_is_provider_error(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=_ok([[1, 0, 0]])))

        with pytest.raises(ProviderError):
            await _client(handler).embed_batch(["a", "b"], embedding_config)

    @pytest.mark.asyncio
    async def test_non_json_body_is_provider_error(self, embedding_config):
        handler = Recorder(httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(ProviderError):
            await _client(handler).embed("hello", embedding_config)

    @pytest.mark.asyncio
    async def test_non_object_body_is_provider_error(self, embedding_config):
        handler = Recorder(httpx.Response(200, json=[[0.1, 0.2, 0.3]]))

        with pytest.raises(ProviderError):
            await _client(handler).embed("hello", embedding_config)


class TestTokenEstimate:
    def test_estimate_rounds_up(self):
        assert estimate_token_count("") == 0
        assert estimate_token_count("abc") == 1
        assert estimate_token_count("a" * 35) == 10
        assert estimate_token_count("a" * 36) == 11
