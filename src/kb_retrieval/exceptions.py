"""Error taxonomy for knowledge base retrieval.

Fatal errors (ConfigurationError, DimensionMismatchError) are surfaced to the
caller untouched. Provider errors are retryable at the orchestrator's
discretion; the embedding client itself never retries.

Empty outcomes (no knowledge bases, nothing above threshold, gated query)
are NOT errors; they produce a KnowledgeContextResult with has_context=False.
"""

from __future__ import annotations

# HTTP statuses worth retrying: request timeout, conflict, rate limit
RETRYABLE_STATUSES = frozenset({408, 409, 429})


class KnowledgeBaseError(Exception):
    """Base class for all retrieval engine errors."""


class ConfigurationError(KnowledgeBaseError):
    """Raised when credentials or model configuration are missing or invalid."""


class ProviderError(KnowledgeBaseError):
    """Raised when the embedding provider answers with a non-2xx status.

    Attributes:
        status: HTTP status code returned by the provider.
        body: Raw response body (truncated by the caller if needed).
    """

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(f"Embedding API error: {status} - {body}")

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES or self.status >= 500


class ProviderUnavailable(KnowledgeBaseError):
    """Raised on timeout or connection failure talking to the provider."""

    retryable = True


class DimensionMismatchError(KnowledgeBaseError):
    """Raised when two vectors of different dimensionality are compared.

    Indicates chunks embedded with different models ended up in the same
    comparison, a data-integrity bug upstream. Never retried.
    """

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vectors must have same dimensions: expected {expected}, got {actual}"
        )


def is_retryable(error: BaseException) -> bool:
    """Whether the orchestrator may retry after this error."""
    return bool(getattr(error, "retryable", False))
