"""Retrieval engine configuration via Pydantic BaseSettings.

All settings load from environment variables with the KNOWLEDGE_ prefix.
For example, KNOWLEDGE_EMBEDDING_MODEL sets embedding_model. The provider
credential is also read from the conventional OPENAI_API_KEY variable.

Embedding settings are never defaulted inline at call sites: callers turn a
KnowledgeBaseConfig (plus optional per-call overrides) into a fully validated
EmbeddingConfig with resolve_embedding_config() before any network call.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.kb_retrieval.exceptions import ConfigurationError

DEFAULT_EMBEDDING_BASE_URL = "https://api.openai.com/v1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536


class FanOutPolicy(str, Enum):
    """What a per-knowledge-base failure does to the whole retrieval."""

    degrade = "degrade"  # log it, treat the base as having zero results
    abort = "abort"  # re-raise, failing the whole request


class KnowledgeBaseConfig(BaseSettings):
    """Configuration for embedding, ranking, context assembly and chunking.

    Attributes:
        openai_api_key: Provider credential (KNOWLEDGE_OPENAI_API_KEY or OPENAI_API_KEY).
        embedding_base_url: Provider endpoint; override for compatible gateways.
        embedding_model: Embedding model name.
        embedding_dimensions: Target vector length requested from the provider.
        embedding_timeout: Seconds before a provider call fails as unavailable.
        embedding_max_retries: Attempts the orchestrator makes per query embedding.
        embedding_retry_min_wait: Lower bound of exponential backoff (seconds).
        embedding_retry_max_wait: Upper bound of exponential backoff (seconds).
        embedding_batch_size: Texts per provider call during ingestion.
        default_top_k: Results kept after the global merge.
        default_threshold: Minimum similarity score.
        default_max_context_length: Character budget of the assembled context.
        candidate_limit: Max candidates requested from the store per base (None = all).
        fanout_policy: Behaviour when one knowledge base fails during fan-out.
        chunk_size: Target chunk size in characters.
        chunk_overlap: Overlap between consecutive chunks in characters.
        log_level: Root log level.
        json_logs: Render logs as JSON instead of console output.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Embedding provider
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("KNOWLEDGE_OPENAI_API_KEY", "OPENAI_API_KEY", "openai_api_key"),
    )
    embedding_base_url: str = DEFAULT_EMBEDDING_BASE_URL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int = Field(default=DEFAULT_EMBEDDING_DIMENSIONS, gt=0)
    embedding_timeout: float = Field(default=30.0, gt=0)
    embedding_max_retries: int = Field(default=3, ge=1, le=10)
    embedding_retry_min_wait: float = Field(default=1.0, ge=0)
    embedding_retry_max_wait: float = Field(default=10.0, ge=0)
    embedding_batch_size: int = Field(default=20, ge=1, le=2048)

    # Search
    default_top_k: int = Field(default=5, ge=1, le=20)
    default_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    default_max_context_length: int = Field(default=4000, ge=100, le=16000)
    candidate_limit: int | None = Field(default=None, ge=1)
    fanout_policy: FanOutPolicy = FanOutPolicy.degrade

    # Chunking
    chunk_size: int = Field(default=1000, ge=50)
    chunk_overlap: int = Field(default=200, ge=0)

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False


class EmbeddingConfig(BaseModel):
    """Fully resolved, validated settings for one embedding call."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(min_length=1)
    dimensions: int = Field(gt=0)
    api_key: SecretStr
    base_url: str = Field(min_length=1)
    timeout: float = Field(default=30.0, gt=0)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/embeddings"


_OVERRIDABLE = frozenset({"model", "dimensions", "api_key", "base_url", "timeout"})


def resolve_embedding_config(
    config: KnowledgeBaseConfig,
    overrides: Mapping[str, Any] | None = None,
) -> EmbeddingConfig:
    """Merge a full config with per-call overrides into an EmbeddingConfig.

    Overrides whose value is None are ignored, so a knowledge base that does
    not pin a model inherits the configured one.

    Raises:
        ConfigurationError: If an override key is unknown, no credential can be
            resolved, or the resulting values are invalid.
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    unknown = set(overrides) - _OVERRIDABLE
    if unknown:
        raise ConfigurationError(f"Unknown embedding options: {sorted(unknown)}")

    api_key = overrides.get("api_key", config.openai_api_key)
    if isinstance(api_key, SecretStr):
        api_key = api_key.get_secret_value()
    if not api_key:
        raise ConfigurationError(
            "Embedding provider API key is required "
            "(set KNOWLEDGE_OPENAI_API_KEY or OPENAI_API_KEY)"
        )

    values = {
        "model": overrides.get("model", config.embedding_model),
        "dimensions": overrides.get("dimensions", config.embedding_dimensions),
        "api_key": api_key,
        "base_url": overrides.get("base_url", config.embedding_base_url),
        "timeout": overrides.get("timeout", config.embedding_timeout),
    }
    try:
        return EmbeddingConfig(**values)
    except ValueError as exc:
        # pydantic.ValidationError subclasses ValueError
        raise ConfigurationError(f"Invalid embedding configuration: {exc}") from exc
