"""Async embedding client for OpenAI-compatible providers.

POSTs to {base_url}/embeddings with a bearer credential and maps the
response onto EmbeddingResult values. Failures are terminal for the call:
non-2xx responses raise ProviderError, timeouts and connection failures
raise ProviderUnavailable. Retry policy belongs to the orchestrator.
"""

from __future__ import annotations

import math
from typing import Any, Sequence

import httpx
import structlog

from src.kb_retrieval.config import EmbeddingConfig
from src.kb_retrieval.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    ProviderError,
    ProviderUnavailable,
)
from src.kb_retrieval.models import EmbeddingResult

logger = structlog.get_logger(__name__)

# ~3.5 characters per token for mixed prose and code
CHARS_PER_TOKEN = 3.5

# Provider error bodies are logged and carried on the exception, capped
MAX_ERROR_BODY = 2000


def estimate_token_count(text: str) -> int:
    """Cheap token estimate used before (or instead of) provider usage data."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _total_tokens(data: dict[str, Any]) -> int:
    # Some compatible gateways send "usage": null
    usage = data.get("usage") or {}
    return int(usage.get("total_tokens") or 0)


class EmbeddingClient:
    """Converts text into fixed-dimension vectors via an HTTP provider.

    Stateless apart from an optional injected transport, so one instance can
    serve concurrent requests.

    Args:
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    def _client(self, config: EmbeddingConfig) -> httpx.AsyncClient:
        """Create a new httpx client bound to the call's timeout and credential."""
        api_key = config.api_key.get_secret_value()
        if not api_key:
            raise ConfigurationError("Embedding provider API key is required")
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout,
            transport=self._transport,
        )

    async def embed(self, text: str, config: EmbeddingConfig) -> EmbeddingResult:
        """Embed a single text.

        Args:
            text: Non-empty input text.
            config: Resolved embedding configuration.

        Returns:
            EmbeddingResult whose vector length equals config.dimensions.
        """
        if not text:
            raise ValueError("Cannot embed empty text")

        data = await self._request(text, config)
        items = self._items(data, expected=1)
        return EmbeddingResult(
            embedding=self._checked_vector(items[0], config),
            token_count=_total_tokens(data),
            model=config.model,
        )

    async def embed_batch(
        self, texts: Sequence[str], config: EmbeddingConfig
    ) -> list[EmbeddingResult]:
        """Embed several texts in one provider call.

        The provider reports aggregate usage only, so each result carries
        ceil(total_tokens / len(texts)).

        Returns:
            One EmbeddingResult per input, in input order. Empty input returns
            an empty list without a network call.
        """
        if len(texts) == 0:
            return []
        if any(not t for t in texts):
            raise ValueError("Cannot embed empty text")

        data = await self._request(list(texts), config)
        items = self._items(data, expected=len(texts))
        total_tokens = _total_tokens(data)
        tokens_per_item = math.ceil(total_tokens / len(texts))

        return [
            EmbeddingResult(
                embedding=self._checked_vector(item, config),
                token_count=tokens_per_item,
                model=config.model,
            )
            for item in items
        ]

    async def _request(self, payload: str | list[str], config: EmbeddingConfig) -> dict[str, Any]:
        body = {
            "model": config.model,
            "input": payload,
            "dimensions": config.dimensions,
        }
        try:
            async with self._client(config) as client:
                response = await client.post(config.endpoint, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("embeddings.provider_timeout", model=config.model, timeout=config.timeout)
            raise ProviderUnavailable(f"Embedding provider timed out after {config.timeout}s") from exc
        except httpx.TransportError as exc:
            logger.warning("embeddings.provider_unreachable", model=config.model, error=str(exc))
            raise ProviderUnavailable(f"Embedding provider unreachable: {exc}") from exc

        if not response.is_success:
            error_body = response.text[:MAX_ERROR_BODY]
            logger.warning(
                "embeddings.provider_error",
                model=config.model,
                status_code=response.status_code,
            )
            raise ProviderError(response.status_code, error_body)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, response.text[:MAX_ERROR_BODY]) from exc
        if not isinstance(data, dict):
            raise ProviderError(response.status_code, response.text[:MAX_ERROR_BODY])

        logger.debug(
            "embeddings.request_completed",
            model=config.model,
            inputs=1 if isinstance(payload, str) else len(payload),
            total_tokens=_total_tokens(data),
        )
        return data

    @staticmethod
    def _items(data: dict[str, Any], expected: int) -> list[dict[str, Any]]:
        """Return response items ordered by their index field."""
        items = data.get("data")
        if not isinstance(items, list) or len(items) != expected:
            raise ProviderError(
                200,
                f"Expected {expected} embeddings, got {len(items) if isinstance(items, list) else 'none'}",
            )
        return sorted(items, key=lambda item: item.get("index", 0))

    @staticmethod
    def _checked_vector(item: dict[str, Any], config: EmbeddingConfig) -> list[float]:
        vector = item.get("embedding") or []
        if len(vector) != config.dimensions:
            raise DimensionMismatchError(config.dimensions, len(vector))
        return [float(v) for v in vector]
